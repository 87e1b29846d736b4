# @TASK P0-T0.2 - pydantic-settings based search binding configuration

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from searchbind.constants import BackendKind, FreeTextMode


class Settings(BaseSettings):
    """searchbind settings.

    All values are loaded from environment variables.
    A .env file in the working directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Datastore (authoritative entities) ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./searchbind.db"

    # --- Search backend ---
    SEARCH_BACKEND: BackendKind = BackendKind.SQLITE
    SEARCH_INDEX_URL: str = "sqlite+aiosqlite:///./search_index.db"  # used by the sqlite backend
    SEARCH_SERVICE_URL: str = "http://localhost:8080"  # used by the http backend
    SEARCH_SERVICE_API_KEY: str = ""
    SEARCH_TIMEOUT: float = 30.0

    # --- Indexing ---
    REINDEX_BATCH_SIZE: int = 500

    # --- Query ---
    SEARCH_DEFAULT_LIMIT: int = 20
    SEARCH_MAX_LIMIT: int = 100
    FREE_TEXT_MODE: FreeTextMode = FreeTextMode.ALL_TOKENS

    # --- Snippets ---
    SNIPPET_START_SEL: str = "<b>"
    SNIPPET_STOP_SEL: str = "</b>"
    SNIPPET_ELLIPSIS: str = "…"
    SNIPPET_MAX_TOKENS: int = 32  # FTS5 caps this at 64

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        return _to_async_url(self.DATABASE_URL)

    @property
    def async_index_url(self) -> str:
        """Ensure the sqlite index URL uses the aiosqlite driver."""
        return _to_async_url(self.SEARCH_INDEX_URL)


def _to_async_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
