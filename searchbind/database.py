# @TASK P0-T0.3 - SQLAlchemy 2.x async engine and session factories
# @TEST tests/test_database.py

"""Datastore wiring.

The module-level ``engine`` and ``async_session_factory`` back the bundled
FastAPI app.  Host applications that already own a database build their own
factory and hand it to the entity store::

    session_factory = create_session_factory("postgresql+asyncpg://...")
    store = SqlAlchemyEntityStore(session_factory)
"""

from __future__ import annotations

import logging

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from searchbind.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for host application models."""


def create_session_factory(bind: AsyncEngine | str, **engine_kwargs) -> async_sessionmaker[AsyncSession]:
    """Build a session factory suitable for :class:`SqlAlchemyEntityStore`.

    Entities are not expired on commit: full-mode results are read in a
    short-lived session and their attributes are accessed after it closes.

    Args:
        bind: An async engine, or a database URL to create one from.
        **engine_kwargs: Passed to ``create_async_engine`` when ``bind`` is a URL.
    """
    engine = create_async_engine(bind, **engine_kwargs) if isinstance(bind, str) else bind
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(bind: AsyncEngine, metadata: MetaData | None = None) -> None:
    """Create every table of ``metadata`` (default: models on :class:`Base`)."""
    metadata = metadata if metadata is not None else Base.metadata
    async with bind.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Ensured %d datastore table(s)", len(metadata.tables))


settings = get_settings()

engine = create_async_engine(
    settings.async_database_url,
    echo=False,
    pool_pre_ping=True,
)

async_session_factory = create_session_factory(engine)
