"""Search backend implementations and the settings-driven factory."""

from searchbind.backends.base import Hit, HitPage, SearchBackend
from searchbind.backends.http import HttpSearchBackend
from searchbind.backends.sqlite_fts import SqliteFtsBackend
from searchbind.config import Settings, get_settings
from searchbind.constants import BackendKind


def build_backend(settings: Settings | None = None) -> SearchBackend:
    """Create the backend selected by ``SEARCH_BACKEND``."""
    if settings is None:
        settings = get_settings()

    if settings.SEARCH_BACKEND == BackendKind.HTTP:
        return HttpSearchBackend(
            url=settings.SEARCH_SERVICE_URL,
            api_key=settings.SEARCH_SERVICE_API_KEY or None,
            timeout=settings.SEARCH_TIMEOUT,
        )
    return SqliteFtsBackend(
        settings.async_index_url,
        snippet_start=settings.SNIPPET_START_SEL,
        snippet_stop=settings.SNIPPET_STOP_SEL,
        snippet_ellipsis=settings.SNIPPET_ELLIPSIS,
        snippet_tokens=settings.SNIPPET_MAX_TOKENS,
    )


__all__ = [
    "Hit",
    "HitPage",
    "HttpSearchBackend",
    "SearchBackend",
    "SqliteFtsBackend",
    "build_backend",
]
