# @TASK P1-T1.2 - Entity to index document mapping
# @TEST tests/test_mapper.py

"""Converts live entities into backend documents.

List-valued attributes stay lists so the backend indexes each item as its
own value (a tag list ``["decent", "businessmen love it"]`` is two values,
not one concatenated string).  Null and empty attributes are left out of the
document entirely, so queries against an absent field find nothing.
"""

from __future__ import annotations

from collections.abc import Set
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from searchbind.errors import MissingEntityKey
from searchbind.schema import SchemaDescriptor

FieldValue = str | list[str]


class IndexDocument(BaseModel):
    """Backend representation of one entity.

    Attributes:
        key: Entity key, stringified.
        fields: Field name to value; multi-value fields hold a list of strings.
    """

    key: str
    fields: dict[str, FieldValue] = Field(default_factory=dict)


def _scalar_to_text(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _normalize(value: Any) -> FieldValue | None:
    """Return the indexable form of an attribute value, or None to omit it."""
    if value is None:
        return None
    if isinstance(value, (list, tuple, Set)):
        items = [_scalar_to_text(item) for item in value if item is not None]
        items = [item for item in items if item.strip()]
        return items or None
    text = _scalar_to_text(value)
    return text if text.strip() else None


def to_document(entity: Any, schema: SchemaDescriptor) -> IndexDocument:
    """Build the index document for ``entity`` according to ``schema``.

    Args:
        entity: Object exposing the declared attributes and the key attribute.
        schema: Descriptor naming the fields to read.

    Returns:
        An IndexDocument containing every non-empty declared field.

    Raises:
        MissingEntityKey: If the entity has no value for ``schema.key``.
    """
    key = getattr(entity, schema.key, None)
    if key is None:
        raise MissingEntityKey(schema.namespace, schema.key)

    fields: dict[str, FieldValue] = {}
    for name in schema.fields:
        value = _normalize(getattr(entity, name, None))
        if value is not None:
            fields[name] = value

    return IndexDocument(key=str(key), fields=fields)
