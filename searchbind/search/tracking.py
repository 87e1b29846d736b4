# @TASK P2-T2.6 - Keep indexes in step with ORM writes
# @TEST tests/test_tracking.py

"""Session-level change tracking for indexed models.

Attach a :class:`ChangeTracker` to a session and every flushed insert,
update or delete of a model bound to a namespace is queued.  Queued changes
only become ready once the transaction commits; a rollback discards them.
Calling :meth:`ChangeTracker.apply` pushes ready changes to the backend::

    tracker = ChangeTracker(search_engine)
    async with async_session_factory() as session:
        tracker.attach(session)
        session.add(Product(name="iphone"))
        await session.commit()
    await tracker.apply()

Session events fire synchronously inside the flush, so the backend writes
happen in ``apply()`` rather than in the event handlers themselves.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from searchbind.errors import DocumentMappingError
from searchbind.search.mapper import IndexDocument, to_document

if TYPE_CHECKING:
    from searchbind.search.engine import SearchEngine

logger = logging.getLogger(__name__)

# (namespace, key) -> document to upsert, or None for a delete
_Changes = dict[tuple[str, str], IndexDocument | None]


class ChangeTracker:
    """Collects committed ORM changes and replays them into the search index.

    Args:
        engine: Search engine whose registry decides which models are
            indexed and whose indexer applies the changes.
    """

    def __init__(self, engine: SearchEngine) -> None:
        self._engine = engine
        self._pending: _Changes = {}
        self._ready: _Changes = {}

    @property
    def ready_count(self) -> int:
        return len(self._ready)

    # ------------------------------------------------------------------
    # Session wiring
    # ------------------------------------------------------------------

    def attach(self, session: Session | AsyncSession) -> None:
        """Listen to flush/commit/rollback events of ``session``."""
        sync_session = self._sync_session(session)
        event.listen(sync_session, "after_flush", self._after_flush)
        event.listen(sync_session, "after_commit", self._after_commit)
        event.listen(sync_session, "after_rollback", self._after_rollback)

    def detach(self, session: Session | AsyncSession) -> None:
        sync_session = self._sync_session(session)
        event.remove(sync_session, "after_flush", self._after_flush)
        event.remove(sync_session, "after_commit", self._after_commit)
        event.remove(sync_session, "after_rollback", self._after_rollback)

    @staticmethod
    def _sync_session(session: Session | AsyncSession) -> Session:
        if isinstance(session, AsyncSession):
            return session.sync_session
        return session

    # ------------------------------------------------------------------
    # Applying changes
    # ------------------------------------------------------------------

    async def apply(self) -> int:
        """Push every committed change to the backend.

        Only the last change per entity is applied.  A change leaves the
        ready queue only once its backend call succeeded, so after a backend
        error the failed change and everything after it are retried by the
        next ``apply()``.

        Returns:
            Number of backend operations performed.
        """
        indexer = self._engine.indexer
        applied = 0
        for change_key, document in list(self._ready.items()):
            namespace, key = change_key
            if document is None:
                await indexer.on_delete(namespace, key)
            else:
                await indexer.upsert_document(namespace, document)
            # A commit during the await may have queued a newer change for this key.
            if change_key in self._ready and self._ready[change_key] is document:
                del self._ready[change_key]
            applied += 1
        if applied:
            logger.debug("Applied %d tracked index change(s)", applied)
        return applied

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _after_flush(self, session: Session, flush_context: Any) -> None:
        for entity in list(session.new) + list(session.dirty):
            self._record_save(entity)
        for entity in session.deleted:
            self._record_delete(entity)

    def _after_commit(self, session: Session) -> None:
        if self._pending:
            self._ready.update(self._pending)
            self._pending = {}

    def _after_rollback(self, session: Session) -> None:
        if self._pending:
            logger.debug("Discarding %d uncommitted index change(s)", len(self._pending))
            self._pending = {}

    def _record_save(self, entity: Any) -> None:
        for schema in self._engine.registry.for_model(type(entity)):
            try:
                document = to_document(entity, schema)
            except DocumentMappingError:
                logger.exception("Skipping index update for namespace '%s'", schema.namespace)
                continue
            self._pending[(schema.namespace, document.key)] = document

    def _record_delete(self, entity: Any) -> None:
        for schema in self._engine.registry.for_model(type(entity)):
            key = getattr(entity, schema.key, None)
            if key is None:
                continue
            self._pending[(schema.namespace, str(key))] = None
