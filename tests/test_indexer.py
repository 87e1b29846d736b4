# @TASK P2-T2.3 - Entity indexer tests
# @TEST tests/test_indexer.py

"""Tests for the Indexer.

Backend and entity store are mocked. Tests cover:
1-5: Bulk reindex (clear first, batching, mapping failures, empty store)
6-9: Incremental hooks (create, update, delete, unknown namespace)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from searchbind.errors import BackendUnavailable, InvalidSchema, UnknownNamespace
from searchbind.schema import SchemaRegistry
from searchbind.search.indexer import Indexer, IndexResult
from searchbind.search.mapper import IndexDocument

FIELDS = ["name", "href", "tags"]


class _Product:
    pass


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> SchemaRegistry:
    registry = SchemaRegistry()
    registry.register("products", FIELDS, model=_Product)
    registry.register("loose", FIELDS)
    return registry


@pytest.fixture
def mock_backend() -> AsyncMock:
    """Create a mock SearchBackend whose upsert_many reports every document."""
    backend = AsyncMock()
    backend.upsert_many.side_effect = lambda namespace, documents: len(list(documents))
    return backend


def _make_store(*batches: list) -> MagicMock:
    """Create a mock EntityStore streaming the given batches."""

    async def iter_batches(schema, batch_size) -> AsyncIterator[list]:
        for batch in batches:
            yield batch

    store = MagicMock()
    store.iter_batches.side_effect = iter_batches
    return store


def _make_product(key: int | None, name: str = "iphone") -> SimpleNamespace:
    return SimpleNamespace(id=key, name=name, href="apple", tags=["awesome"])


# ---------------------------------------------------------------------------
# 1. Bulk reindex
# ---------------------------------------------------------------------------


class TestReindexAll:
    """Bulk reindex clears the namespace and streams every entity."""

    @pytest.mark.asyncio
    async def test_clears_before_writing(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        store = _make_store([_make_product(1), _make_product(2, "nokia")])
        indexer = Indexer(mock_backend, store, registry)

        result = await indexer.reindex_all("products")

        assert result == IndexResult(indexed=2, failed=0, batches=1)
        method_names = [c[0] for c in mock_backend.method_calls]
        assert method_names == ["ensure_namespace", "clear", "upsert_many"]
        mock_backend.ensure_namespace.assert_awaited_once_with("products", tuple(FIELDS))

    @pytest.mark.asyncio
    async def test_batches_are_sent_separately(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        store = _make_store([_make_product(1), _make_product(2)], [_make_product(3)])
        indexer = Indexer(mock_backend, store, registry, batch_size=2)

        result = await indexer.reindex_all("products")

        assert result.indexed == 3
        assert result.batches == 2
        store.iter_batches.assert_called_once()
        assert store.iter_batches.call_args.args[1] == 2

    @pytest.mark.asyncio
    async def test_mapping_failures_are_counted(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        store = _make_store([_make_product(1), _make_product(None), _make_product(3)])
        indexer = Indexer(mock_backend, store, registry)

        result = await indexer.reindex_all("products")

        assert result.indexed == 2
        assert result.failed == 1
        documents = mock_backend.upsert_many.call_args.args[1]
        assert [d.key for d in documents] == ["1", "3"]

    @pytest.mark.asyncio
    async def test_empty_store_leaves_empty_namespace(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        indexer = Indexer(mock_backend, _make_store(), registry)

        result = await indexer.reindex_all("products")

        assert result == IndexResult()
        mock_backend.clear.assert_awaited_once_with("products")
        mock_backend.upsert_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backend_errors_propagate(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        mock_backend.upsert_many.side_effect = BackendUnavailable("down")
        indexer = Indexer(mock_backend, _make_store([_make_product(1)]), registry)

        with pytest.raises(BackendUnavailable):
            await indexer.reindex_all("products")

    @pytest.mark.asyncio
    async def test_namespace_without_model(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        indexer = Indexer(mock_backend, _make_store([_make_product(1)]), registry)

        with pytest.raises(InvalidSchema):
            await indexer.reindex_all("loose")
        mock_backend.clear.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_store(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        with pytest.raises(RuntimeError):
            await Indexer(mock_backend, None, registry).reindex_all("products")

    def test_batch_size_must_be_positive(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        with pytest.raises(ValueError):
            Indexer(mock_backend, None, registry, batch_size=0)


# ---------------------------------------------------------------------------
# 2. Incremental hooks
# ---------------------------------------------------------------------------


class TestIncremental:
    """Create/update/delete touch a single document."""

    @pytest.mark.asyncio
    async def test_on_create_upserts_document(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        indexer = Indexer(mock_backend, None, registry)

        document = await indexer.on_create("products", _make_product(13))

        assert document == IndexDocument(key="13", fields={"name": "iphone", "href": "apple", "tags": ["awesome"]})
        mock_backend.upsert.assert_awaited_once_with("products", document)

    @pytest.mark.asyncio
    async def test_on_update_replaces_document(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        indexer = Indexer(mock_backend, None, registry)

        await indexer.on_update("products", _make_product(13, "iphone 2"))

        sent = mock_backend.upsert.call_args.args[1]
        assert sent.fields["name"] == "iphone 2"

    @pytest.mark.asyncio
    async def test_on_delete_uses_string_key(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        indexer = Indexer(mock_backend, None, registry)

        await indexer.on_delete("products", 13)

        assert mock_backend.delete.await_args == call("products", "13")

    @pytest.mark.asyncio
    async def test_unknown_namespace(self, registry: SchemaRegistry, mock_backend: AsyncMock):
        indexer = Indexer(mock_backend, None, registry)

        with pytest.raises(UnknownNamespace):
            await indexer.on_create("missing", _make_product(1))
        mock_backend.upsert.assert_not_awaited()
