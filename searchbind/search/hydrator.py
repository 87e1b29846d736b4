# @TASK P2-T2.4 - Result hydration (full / partial / snippet)
# @TEST tests/test_hydrator.py

"""Turns raw backend hits into search results.

The hydration mode follows from what the caller asked for:

- **full**: no fetch fields and no snippets.  Every hit is re-read from the
  datastore in one batched lookup; hits whose entity no longer exists are
  dropped.
- **partial**: fetch fields only.  Values come from the index; the
  datastore is never touched.
- **snippet**: snippets requested (with or without fetch fields).  Like
  partial, plus highlighted excerpts for the fields that matched.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from searchbind.backends.base import Hit
from searchbind.constants import HydrationMode
from searchbind.errors import InvalidSearchOption
from searchbind.schema import SchemaDescriptor
from searchbind.store import EntityStore

logger = logging.getLogger(__name__)


class SearchResult(BaseModel):
    """A single materialized search result.

    ``fields`` always carries every declared field of the namespace; fields
    that were not populated are ``None``.

    Attributes:
        namespace: Namespace the result belongs to.
        key: Key of the matching entity.
        mode: Hydration mode that produced the result.
        fields: Declared field values.
        snippets: Highlighted excerpts keyed by field, only for fields that
            were requested and matched.
        entity: The datastore object (full mode only).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    namespace: str
    key: str
    mode: HydrationMode
    fields: dict[str, Any] = Field(default_factory=dict)
    snippets: dict[str, str] = Field(default_factory=dict)
    entity: Any = Field(default=None, exclude=True)

    def get(self, field: str) -> Any:
        """Return a field value, or None when it was not populated."""
        return self.fields.get(field)

    def snippet(self, field: str) -> str | None:
        """Return the excerpt for ``field``; None when not requested or not matched."""
        return self.snippets.get(field)

    def has_snippet(self, field: str) -> bool:
        return field in self.snippets


def resolve_mode(fetch: Sequence[str], snippets: Sequence[str]) -> HydrationMode:
    """Pick the hydration mode for a fetch/snippet combination."""
    if snippets:
        return HydrationMode.SNIPPET
    if fetch:
        return HydrationMode.PARTIAL
    return HydrationMode.FULL


def validate_fields(schema: SchemaDescriptor, names: Sequence[str], option: str) -> tuple[str, ...]:
    """Check that every requested field is declared; return them de-duplicated in order.

    Raises:
        InvalidSearchOption: If a name is not a declared field.
    """
    if isinstance(names, str):
        names = [names]
    unknown = [name for name in names if not schema.has_field(name)]
    if unknown:
        raise InvalidSearchOption(
            f"Unknown {option} field(s) for namespace '{schema.namespace}': {', '.join(map(str, unknown))}"
        )
    return tuple(dict.fromkeys(names))


class ResultHydrator:
    """Materializes backend hits in the requested mode.

    Args:
        store: Datastore view used for full-mode reads.  Only needed when
            full-mode searches are made.
    """

    def __init__(self, store: EntityStore | None = None) -> None:
        self._store = store

    async def hydrate(
        self,
        schema: SchemaDescriptor,
        hits: Sequence[Hit],
        fetch: Sequence[str] = (),
        snippets: Sequence[str] = (),
    ) -> list[SearchResult]:
        """Convert hits into results, preserving their order.

        Args:
            schema: Index definition of the searched namespace.
            hits: Ranked backend hits.
            fetch: Fields whose indexed values should be returned.
            snippets: Fields whose excerpts should be returned.

        Returns:
            Results in hit order.  In full mode, hits without a matching
            entity are left out.

        Raises:
            InvalidSearchOption: If a fetch or snippet field is not declared.
        """
        fetch = validate_fields(schema, fetch, "fetch")
        snippets = validate_fields(schema, snippets, "snippet")
        mode = resolve_mode(fetch, snippets)

        if not hits:
            return []
        if mode == HydrationMode.FULL:
            return await self._hydrate_full(schema, hits)
        return [self._from_index(schema, hit, mode, fetch, snippets) for hit in hits]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _hydrate_full(self, schema: SchemaDescriptor, hits: Sequence[Hit]) -> list[SearchResult]:
        if self._store is None:
            raise RuntimeError("Full-mode results require an entity store")

        keys = list(dict.fromkeys(hit.key for hit in hits))
        entities = await self._store.get_many(schema, keys)

        results: list[SearchResult] = []
        stale: list[str] = []
        for hit in hits:
            entity = entities.get(hit.key)
            if entity is None:
                stale.append(hit.key)
                continue
            results.append(
                SearchResult(
                    namespace=schema.namespace,
                    key=hit.key,
                    mode=HydrationMode.FULL,
                    fields={name: getattr(entity, name, None) for name in schema.fields},
                    entity=entity,
                )
            )

        if stale:
            logger.info(
                "Dropped %d stale hit(s) from namespace '%s': %s",
                len(stale),
                schema.namespace,
                ", ".join(stale),
            )
        return results

    @staticmethod
    def _from_index(
        schema: SchemaDescriptor,
        hit: Hit,
        mode: HydrationMode,
        fetch: tuple[str, ...],
        snippets: tuple[str, ...],
    ) -> SearchResult:
        stored = hit.fields or {}
        fields = {name: (stored.get(name) if name in fetch else None) for name in schema.fields}
        excerpts = {name: hit.snippets[name] for name in snippets if hit.snippets.get(name)}
        return SearchResult(
            namespace=schema.namespace,
            key=hit.key,
            mode=mode,
            fields=fields,
            snippets=excerpts,
        )
