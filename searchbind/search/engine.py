# @TASK P2-T2.5 - Search engine facade (define / reindex / search)
# @TEST tests/test_engine.py, tests/test_integration.py

"""Application-facing search API.

:class:`SearchEngine` wires the registry, translator, backend, indexer and
hydrator together::

    engine = SearchEngine(backend, SqlAlchemyEntityStore(async_session_factory))
    engine.define_index("products", ["name", "description", "tags"], model=Product)
    await engine.reindex("products")

    results = await engine.search("products", "blackberry")
    results = await engine.search("products", conditions={"tags": "decent"}, fetch=["name"])
    results = await engine.search("products", "features", snippets=["description"])

Caller errors (unknown fields, empty queries, bad pagination) are raised
before any request reaches the backend.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from searchbind.backends.base import SearchBackend
from searchbind.config import Settings, get_settings
from searchbind.errors import InvalidSearchOption
from searchbind.schema import SchemaDescriptor, SchemaRegistry
from searchbind.search.hydrator import ResultHydrator, SearchResult, validate_fields
from searchbind.search.indexer import Indexer, IndexResult
from searchbind.search.mapper import IndexDocument
from searchbind.search.translator import Conditions, QueryTranslator
from searchbind.store import EntityStore

logger = logging.getLogger(__name__)


class SearchPage(BaseModel):
    """One page of search results with the total number of matches."""

    results: list[SearchResult]
    total: int


class SearchEngine:
    """Entry point for defining, populating and querying search indexes.

    Args:
        backend: Search backend holding the indexes.
        store: Datastore view used for reindexing and full-mode results.
        registry: Registry of index definitions (a fresh one by default).
        settings: Application settings (``get_settings()`` by default).
    """

    def __init__(
        self,
        backend: SearchBackend,
        store: EntityStore | None = None,
        *,
        registry: SchemaRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._backend = backend
        self._store = store
        self._registry = registry if registry is not None else SchemaRegistry()
        self._translator = QueryTranslator(
            self._registry,
            dialect=backend.dialect,
            free_text_mode=self._settings.FREE_TEXT_MODE,
        )
        self._indexer = Indexer(backend, store, self._registry, batch_size=self._settings.REINDEX_BATCH_SIZE)
        self._hydrator = ResultHydrator(store)

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def backend(self) -> SearchBackend:
        return self._backend

    @property
    def indexer(self) -> Indexer:
        return self._indexer

    # ------------------------------------------------------------------
    # Index definition and maintenance
    # ------------------------------------------------------------------

    def define_index(
        self,
        namespace: str,
        fields: Sequence[str],
        *,
        model: type | None = None,
        key: str = "id",
    ) -> SchemaDescriptor:
        """Register a namespace and its searchable fields.

        Raises:
            InvalidSchema: If the namespace or fields are malformed.
            DuplicateNamespace: If the namespace is already defined.
        """
        schema = self._registry.register(namespace, fields, model=model, key=key)
        logger.info("Defined index '%s' with fields %s", namespace, ", ".join(schema.fields))
        return schema

    async def reindex(self, namespace: str) -> IndexResult:
        """Rebuild a namespace from every entity in the datastore."""
        return await self._indexer.reindex_all(namespace)

    async def clear_index(self, namespace: str) -> None:
        """Remove every document from a namespace."""
        await self._indexer.clear(namespace)

    async def index(self, namespace: str, entity: Any) -> IndexDocument:
        """Add or replace the document for one entity."""
        return await self._indexer.on_update(namespace, entity)

    async def remove(self, namespace: str, key: Any) -> None:
        """Remove the document for one entity key."""
        await self._indexer.on_delete(namespace, key)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        namespace: str,
        term: str = "",
        *,
        conditions: Conditions | None = None,
        fetch: Sequence[str] | None = None,
        snippets: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[SearchResult]:
        """Search a namespace and return results in relevance order.

        Args:
            namespace: Registered namespace to search.
            term: Free-text term matched against every declared field.
            conditions: Field conditions, e.g. ``{"tags": "decent", "-href": "apple"}``.
            fetch: Fields whose indexed values should be returned instead of
                re-reading entities from the datastore.
            snippets: Fields whose highlighted excerpts should be returned.
            limit: Maximum number of results (defaults to ``SEARCH_DEFAULT_LIMIT``).
            offset: Number of results to skip.

        Returns:
            The matching results.

        Raises:
            UnknownNamespace: If the namespace is not registered.
            EmptyQuery: If neither a term nor conditions were given.
            InvalidCondition: If a condition is malformed.
            InvalidSearchOption: For undeclared fetch/snippet fields or bad pagination.
            BackendError: If the backend fails.
        """
        page = await self.search_page(
            namespace,
            term,
            conditions=conditions,
            fetch=fetch,
            snippets=snippets,
            limit=limit,
            offset=offset,
        )
        return page.results

    async def search_page(
        self,
        namespace: str,
        term: str = "",
        *,
        conditions: Conditions | None = None,
        fetch: Sequence[str] | None = None,
        snippets: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> SearchPage:
        """Like :meth:`search`, but also returns the total match count."""
        schema = self._registry.get(namespace)
        fetch_fields = validate_fields(schema, fetch or (), "fetch")
        snippet_fields = validate_fields(schema, snippets or (), "snippet")
        limit = self._check_limit(limit)
        offset = self._check_offset(offset)

        query = self._translator.translate(namespace, term, conditions)

        await self._backend.ensure_namespace(namespace, schema.fields)
        hit_page = await self._backend.query(
            namespace,
            query,
            fetch=fetch_fields,
            snippets=snippet_fields,
            limit=limit,
            offset=offset,
        )
        results = await self._hydrator.hydrate(schema, hit_page.hits, fetch_fields, snippet_fields)

        logger.debug(
            "Search on '%s' returned %d of %d matches (limit=%d, offset=%d)",
            namespace,
            len(results),
            hit_page.total,
            limit,
            offset,
        )
        return SearchPage(results=results, total=hit_page.total)

    async def close(self) -> None:
        await self._backend.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._settings.SEARCH_DEFAULT_LIMIT
        max_limit = self._settings.SEARCH_MAX_LIMIT
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= max_limit:
            raise InvalidSearchOption(f"limit must be an integer between 1 and {max_limit}, got {limit!r}")
        return limit

    @staticmethod
    def _check_offset(offset: int) -> int:
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidSearchOption(f"offset must be a non-negative integer, got {offset!r}")
        return offset
