# @TASK P0-T0.3 - Test configuration
import os
import sqlite3
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Mapped, mapped_column

# Set test environment variables before importing searchbind modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SEARCH_BACKEND", "sqlite")
os.environ.setdefault("SEARCH_INDEX_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SEARCH_SERVICE_URL", "http://search.test")

from searchbind.backends.sqlite_fts import SqliteFtsBackend  # noqa: E402
from searchbind.config import Settings  # noqa: E402
from searchbind.database import Base, create_session_factory, create_tables  # noqa: E402
from searchbind.search.engine import SearchEngine  # noqa: E402
from searchbind.store import SqlAlchemyEntityStore  # noqa: E402

PRODUCT_FIELDS = ["name", "href", "tags", "description"]


def _has_fts5() -> bool:
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute("CREATE VIRTUAL TABLE probe USING fts5(body)")
    except sqlite3.OperationalError:
        return False
    finally:
        conn.close()
    return True


FTS5_AVAILABLE = _has_fts5()


class Product(Base):
    """Product entity used across the search tests."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(String(200))
    href: Mapped[str | None] = mapped_column(String(200))
    tags: Mapped[list[str] | None] = mapped_column(JSON)
    description: Mapped[str | None] = mapped_column(Text)


# Products of an imaginary store, keyed by a short handle for assertions.
STORE_PRODUCTS: dict[str, dict] = {
    # Google products
    "blackberry": {"name": "blackberry", "href": "google", "tags": ["decent", "businessmen love it"]},
    "nokia": {"name": "nokia", "href": "google", "tags": ["decent"]},
    # Amazon products
    "android": {"name": "android", "href": "amazon", "tags": ["awesome"]},
    "samsung": {"name": "samsung", "href": "amazon", "tags": ["decent"]},
    "motorola": {
        "name": "motorola",
        "href": "amazon",
        "tags": ["decent"],
        "description": "Not sure about features since I've never owned one.",
    },
    # Ebay products
    "palmpre": {"name": "palmpre", "href": "ebay", "tags": ["discontinued", "worst phone ever"]},
    "palm_pixi_plus": {"name": "palm pixi plus", "href": "ebay", "tags": ["terrible"]},
    "lg_vortex": {"name": "lg vortex", "href": "ebay", "tags": ["decent"]},
    "t_mobile": {"name": "t mobile", "href": "ebay", "tags": ["terrible"]},
    # Yahoo products
    "htc": {"name": "htc", "href": "yahoo", "tags": ["decent"]},
    "htc_evo": {"name": "htc evo", "href": "yahoo", "tags": ["decent"]},
    "ericson": {"name": "ericson", "href": "yahoo", "tags": ["decent"]},
    # Apple products
    "iphone": {
        "name": "iphone",
        "href": "apple",
        "tags": ["awesome", "poor reception"],
        "description": "Puts even more features at your fingertips",
    },
}


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Per-test SQLite datastore with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'data.db'}", echo=False)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture(scope="function")
async def fts_backend(tmp_path) -> AsyncGenerator[SqliteFtsBackend, None]:
    """SQLite FTS5 backend on a per-test index file."""
    if not FTS5_AVAILABLE:
        pytest.skip("SQLite build lacks FTS5")
    backend = SqliteFtsBackend(f"sqlite+aiosqlite:///{tmp_path / 'index.db'}")
    yield backend
    await backend.close()


@pytest.fixture
def search_engine(
    fts_backend: SqliteFtsBackend,
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
) -> SearchEngine:
    """SearchEngine over the FTS5 backend with the products index defined."""
    engine = SearchEngine(fts_backend, SqlAlchemyEntityStore(session_factory), settings=test_settings)
    engine.define_index("products", PRODUCT_FIELDS, model=Product)
    return engine


@pytest_asyncio.fixture(scope="function")
async def store_products(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, Product]:
    """Insert the imaginary store's products and return them by handle."""
    products = {handle: Product(**values) for handle, values in STORE_PRODUCTS.items()}
    async with session_factory() as session:
        session.add_all(products.values())
        await session.commit()
    return products


@pytest_asyncio.fixture(scope="function")
async def indexed_store(search_engine: SearchEngine, store_products: dict[str, Product]) -> dict[str, Product]:
    """Store products, reindexed into the products namespace."""
    await search_engine.reindex("products")
    return store_products


@pytest.fixture
def product_model() -> type[Product]:
    return Product
