# @TASK P0-T0.3 - FastAPI app entrypoint

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from searchbind.backends import build_backend
from searchbind.config import get_settings
from searchbind.database import async_session_factory, create_tables, engine
from searchbind.search.engine import SearchEngine
from searchbind.store import SqlAlchemyEntityStore

logger = logging.getLogger(__name__)


def create_app(search_engine: SearchEngine | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        search_engine: Engine serving the search endpoints.  When omitted,
            one is built from settings at startup and closed at shutdown;
            indexes still have to be defined on ``app.state.search_engine``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifespan: startup and shutdown events."""
        owned: SearchEngine | None = None
        if search_engine is None:
            # Startup: create entity tables and a settings-driven engine
            await create_tables(engine)
            settings = get_settings()
            owned = SearchEngine(
                build_backend(settings),
                SqlAlchemyEntityStore(async_session_factory),
                settings=settings,
            )
            app.state.search_engine = owned
            logger.info("Search engine started with %s backend", settings.SEARCH_BACKEND.value)
        else:
            app.state.search_engine = search_engine

        yield

        # Shutdown: release backend connections and the datastore pool
        if owned is not None:
            await owned.close()
            await engine.dispose()

    app = FastAPI(
        title="searchbind",
        description="Full-text search over application entities",
        version="0.1.0",
        lifespan=lifespan,
    )
    # Available before startup too, e.g. for ASGI test clients without lifespan
    if search_engine is not None:
        app.state.search_engine = search_engine

    from searchbind.api.search import router as search_router

    app.include_router(search_router, prefix="/api")

    @app.get("/api/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint.

        Returns a simple status response to verify the API is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
