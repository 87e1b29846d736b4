# @TASK P1-T1.3 - Authoritative entity reads for reindexing and full hydration
# @TEST tests/test_store.py

"""Read access to the authoritative datastore.

The search layer never writes entities; it only streams them for
reindexing and re-reads them by key for full-mode results.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from searchbind.errors import InvalidSchema
from searchbind.schema import SchemaDescriptor

logger = logging.getLogger(__name__)


class EntityStore(Protocol):
    """Read-only view of the datastore used by the indexer and hydrator."""

    def iter_batches(self, schema: SchemaDescriptor, batch_size: int) -> AsyncIterator[list[Any]]:
        """Yield every entity of ``schema``'s kind in batches of at most ``batch_size``."""
        ...

    async def get_many(self, schema: SchemaDescriptor, keys: Sequence[str]) -> dict[str, Any]:
        """Return the entities that still exist, keyed by stringified key."""
        ...


class SqlAlchemyEntityStore:
    """EntityStore backed by SQLAlchemy ORM models.

    Uses keyset pagination on the key column for streaming, so a reindex
    never holds more than one batch in memory.

    Args:
        session_factory: Factory producing async sessions on the datastore.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def iter_batches(self, schema: SchemaDescriptor, batch_size: int) -> AsyncIterator[list[Any]]:
        model = self._model(schema)
        key_column = getattr(model, schema.key)
        last_key: Any = None

        async with self._session_factory() as session:
            while True:
                stmt = select(model).order_by(key_column).limit(batch_size)
                if last_key is not None:
                    stmt = stmt.where(key_column > last_key)
                result = await session.execute(stmt)
                batch = list(result.scalars().all())
                if not batch:
                    return
                yield batch
                if len(batch) < batch_size:
                    return
                last_key = getattr(batch[-1], schema.key)

    async def get_many(self, schema: SchemaDescriptor, keys: Sequence[str]) -> dict[str, Any]:
        if not keys:
            return {}
        model = self._model(schema)
        key_column = getattr(model, schema.key)
        coerce = self._key_type(model, schema.key)

        typed_keys = []
        for key in keys:
            try:
                typed_keys.append(coerce(key))
            except (TypeError, ValueError):
                logger.debug("Ignoring hit key %r: not a valid %s key", key, schema.namespace)

        if not typed_keys:
            return {}

        async with self._session_factory() as session:
            result = await session.execute(select(model).where(key_column.in_(typed_keys)))
            entities = result.scalars().all()
        return {str(getattr(entity, schema.key)): entity for entity in entities}

    @staticmethod
    def _model(schema: SchemaDescriptor) -> type:
        if schema.model is None:
            raise InvalidSchema(f"Namespace '{schema.namespace}' has no model bound; cannot read entities")
        return schema.model

    @staticmethod
    def _key_type(model: type, key: str) -> type:
        """Python type of the key column, so string keys from the index can be compared."""
        column = inspect(model).columns.get(key)
        if column is None:
            return str
        try:
            return column.type.python_type
        except NotImplementedError:
            return str
