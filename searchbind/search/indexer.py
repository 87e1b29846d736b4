# @TASK P2-T2.3 - Entity indexer (bulk reindex + incremental updates)
# @TEST tests/test_indexer.py

"""Indexer keeping a backend namespace in step with the datastore.

Bulk reindexing clears the namespace and then streams every entity of the
kind through the document mapper in batches.  Because the clear comes first,
running a reindex twice leaves the same index state as running it once.
Incremental hooks (create/update/delete) touch a single document.

A search issued while a reindex is running may see a partially repopulated
namespace; that window is accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from searchbind.backends.base import SearchBackend
from searchbind.errors import DocumentMappingError, InvalidSchema
from searchbind.schema import SchemaDescriptor, SchemaRegistry
from searchbind.search.mapper import IndexDocument, to_document
from searchbind.store import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class IndexResult:
    """Aggregated result of a reindex run.

    Attributes:
        indexed: Number of documents written to the backend.
        failed: Number of entities that could not be mapped to a document.
        batches: Number of batches sent to the backend.
    """

    indexed: int = field(default=0)
    failed: int = field(default=0)
    batches: int = field(default=0)


class Indexer:
    """Populates search backend namespaces from entities.

    Args:
        backend: Search backend receiving the documents.
        store: Datastore view used to stream entities for bulk reindexing.
        registry: Registry of index definitions.
        batch_size: Number of entities mapped and sent per batch.
    """

    def __init__(
        self,
        backend: SearchBackend,
        store: EntityStore | None,
        registry: SchemaRegistry,
        batch_size: int = 500,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._backend = backend
        self._store = store
        self._registry = registry
        self._batch_size = batch_size

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def reindex_all(self, namespace: str) -> IndexResult:
        """Rebuild a namespace from the datastore's current snapshot.

        An empty datastore leaves the namespace empty but queryable.
        Entities that cannot be mapped are logged and counted as failed;
        backend errors abort the run.

        Args:
            namespace: Registered namespace to rebuild.

        Returns:
            An :class:`IndexResult` summarizing the run.

        Raises:
            UnknownNamespace: If the namespace is not registered.
            InvalidSchema: If the namespace has no model bound.
            BackendError: If the backend fails.
        """
        if self._store is None:
            raise RuntimeError("Reindexing requires an entity store")
        schema = self._registry.get(namespace)
        if schema.model is None:
            raise InvalidSchema(f"Namespace '{namespace}' has no model bound; cannot reindex")
        await self._backend.ensure_namespace(namespace, schema.fields)

        await self._backend.clear(namespace)

        result = IndexResult()
        async for batch in self._store.iter_batches(schema, self._batch_size):
            documents = self._map_batch(schema, batch, result)
            if documents:
                result.indexed += await self._backend.upsert_many(namespace, documents)
                result.batches += 1

        logger.info(
            "Reindexed namespace '%s': %d indexed, %d failed, %d batches",
            namespace,
            result.indexed,
            result.failed,
            result.batches,
        )
        return result

    async def on_create(self, namespace: str, entity: Any) -> IndexDocument:
        """Index a newly created entity."""
        return await self._index_entity(namespace, entity)

    async def on_update(self, namespace: str, entity: Any) -> IndexDocument:
        """Replace the document of an updated entity."""
        return await self._index_entity(namespace, entity)

    async def on_delete(self, namespace: str, key: Any) -> None:
        """Remove the document of a deleted entity."""
        await self._prepare(namespace)
        await self._backend.delete(namespace, str(key))
        logger.debug("Removed '%s' from namespace '%s'", key, namespace)

    async def upsert_document(self, namespace: str, document: IndexDocument) -> None:
        """Write an already-mapped document."""
        await self._prepare(namespace)
        await self._backend.upsert(namespace, document)

    async def clear(self, namespace: str) -> None:
        """Drop every document of a namespace."""
        await self._prepare(namespace)
        await self._backend.clear(namespace)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _prepare(self, namespace: str) -> SchemaDescriptor:
        schema = self._registry.get(namespace)
        await self._backend.ensure_namespace(namespace, schema.fields)
        return schema

    async def _index_entity(self, namespace: str, entity: Any) -> IndexDocument:
        schema = await self._prepare(namespace)
        document = to_document(entity, schema)
        await self._backend.upsert(namespace, document)
        logger.debug("Indexed '%s' into namespace '%s'", document.key, namespace)
        return document

    @staticmethod
    def _map_batch(schema: SchemaDescriptor, batch: list[Any], result: IndexResult) -> list[IndexDocument]:
        documents: list[IndexDocument] = []
        for entity in batch:
            try:
                documents.append(to_document(entity, schema))
            except DocumentMappingError:
                result.failed += 1
                logger.exception("Failed to map entity for namespace '%s'", schema.namespace)
        return documents
