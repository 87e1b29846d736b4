# @TASK P1-T1.1 - Index schema descriptors and namespace registry
# @TEST tests/test_schema.py

"""Index schema descriptors.

Each entity kind declares, once at startup, which of its attributes are
indexable and under which namespace.  Descriptors are immutable and looked
up by namespace string afterwards::

    registry = SchemaRegistry()
    registry.register("products", ["name", "href", "tags", "description"], model=Product)
    registry.lookup("products")  # ("name", "href", "tags", "description")
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from searchbind.constants import RESERVED_FIELD_NAMES
from searchbind.errors import DuplicateNamespace, InvalidSchema, UnknownNamespace

_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class SchemaDescriptor:
    """Indexable attributes of one entity kind.

    Attributes:
        namespace: Backend partition holding the documents of this kind.
        fields: Ordered names of the indexed attributes.
        model: ORM class whose rows populate the namespace, if any.
        key: Attribute holding the entity key.
    """

    namespace: str
    fields: tuple[str, ...]
    model: type | None = None
    key: str = "id"

    def has_field(self, name: str) -> bool:
        return name in self.fields


def _validate(namespace: str, fields: tuple[str, ...], key: str) -> None:
    if not isinstance(namespace, str) or not _NAMESPACE_RE.match(namespace):
        raise InvalidSchema(f"Invalid namespace {namespace!r}: use letters, digits, '_' or '-'")
    if not fields:
        raise InvalidSchema(f"Namespace '{namespace}' declares no fields")
    if len(set(fields)) != len(fields):
        raise InvalidSchema(f"Namespace '{namespace}' declares duplicate fields: {list(fields)}")
    for name in fields:
        if not isinstance(name, str) or not name.isidentifier():
            raise InvalidSchema(f"Invalid field name {name!r} in namespace '{namespace}'")
        if name.startswith("__") or name in RESERVED_FIELD_NAMES:
            raise InvalidSchema(f"Field name {name!r} is reserved")
    if not key:
        raise InvalidSchema(f"Namespace '{namespace}' needs a key attribute")


class SchemaRegistry:
    """Registry of index definitions keyed by namespace.

    Registration is serialized with a lock; lookups read an immutable
    descriptor and need no locking.
    """

    def __init__(self) -> None:
        self._schemas: dict[str, SchemaDescriptor] = {}
        self._lock = threading.Lock()

    def register(
        self,
        namespace: str,
        fields: Iterable[str],
        *,
        model: type | None = None,
        key: str = "id",
    ) -> SchemaDescriptor:
        """Register the indexable fields of an entity kind.

        Args:
            namespace: Unique namespace for this entity kind.
            fields: Attribute names to index, in order.
            model: Optional ORM class used for reindexing and full hydration.
            key: Attribute holding the entity key.

        Returns:
            The immutable SchemaDescriptor.

        Raises:
            InvalidSchema: If the namespace or fields are invalid.
            DuplicateNamespace: If the namespace is already registered.
        """
        if isinstance(fields, str):
            raise InvalidSchema(f"Fields for '{namespace}' must be a sequence of names, not a string")
        descriptor = SchemaDescriptor(namespace=namespace, fields=tuple(fields), model=model, key=key)
        _validate(descriptor.namespace, descriptor.fields, descriptor.key)

        with self._lock:
            if namespace in self._schemas:
                raise DuplicateNamespace(namespace)
            self._schemas[namespace] = descriptor
        return descriptor

    def get(self, namespace: str) -> SchemaDescriptor:
        """Return the descriptor for a namespace or raise UnknownNamespace."""
        try:
            return self._schemas[namespace]
        except KeyError:
            raise UnknownNamespace(namespace) from None

    def lookup(self, namespace: str) -> tuple[str, ...]:
        """Return the declared field names of a namespace or raise UnknownNamespace."""
        return self.get(namespace).fields

    def for_model(self, model: type) -> list[SchemaDescriptor]:
        """Return every descriptor bound to ``model`` (or one of its base classes)."""
        return [
            schema
            for schema in self._schemas.values()
            if schema.model is not None and issubclass(model, schema.model)
        ]

    def namespaces(self) -> list[str]:
        return list(self._schemas)

    def __contains__(self, namespace: object) -> bool:
        return namespace in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)
