# @TASK P3-T3.2 - SQLite FTS5 backend tests
# @TEST tests/test_sqlite_backend.py

"""Tests for SqliteFtsBackend on a temporary index file (skipped without FTS5)."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from searchbind.backends.sqlite_fts import SqliteFtsBackend, table_name
from searchbind.errors import BackendUnavailable, MalformedBackendQuery
from searchbind.search.mapper import IndexDocument

FIELDS = ("name", "href", "tags", "description")


def _doc(key: str, **fields) -> IndexDocument:
    return IndexDocument(key=key, fields=fields)


@pytest_asyncio.fixture
async def backend(fts_backend: SqliteFtsBackend) -> SqliteFtsBackend:
    await fts_backend.ensure_namespace("products", FIELDS)
    return fts_backend


# ---------------------------------------------------------------------------
# 1. Namespaces
# ---------------------------------------------------------------------------


class TestNamespaces:
    """One FTS5 table per namespace."""

    def test_table_name(self):
        assert table_name("products") == "fts_products"

    @pytest.mark.asyncio
    async def test_ensure_is_idempotent(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="iphone"))
        await backend.ensure_namespace("products", FIELDS)

        page = await backend.query("products", 'name : "iphone"')
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_changed_fields_recreate_table(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="iphone"))

        other = SqliteFtsBackend(backend._engine)
        await other.ensure_namespace("products", ("name", "href"))

        page = await other.query("products", 'name : "iphone"')
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_concurrent_ensure_creates_table_once(self, fts_backend: SqliteFtsBackend):
        await asyncio.gather(*(fts_backend.ensure_namespace("products", FIELDS) for _ in range(5)))

        await fts_backend.upsert("products", _doc("1", name="iphone"))
        assert (await fts_backend.query("products", 'name : "iphone"')).total == 1

    @pytest.mark.asyncio
    async def test_operations_require_ensure(self, fts_backend: SqliteFtsBackend):
        with pytest.raises(RuntimeError):
            await fts_backend.upsert("never", _doc("1", name="x"))


# ---------------------------------------------------------------------------
# 2. Documents
# ---------------------------------------------------------------------------


class TestDocuments:
    """Upsert, delete and clear."""

    @pytest.mark.asyncio
    async def test_upsert_replaces_by_key(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="iphone"))
        await backend.upsert("products", _doc("1", name="android"))

        assert (await backend.query("products", 'name : "iphone"')).total == 0
        assert (await backend.query("products", 'name : "android"')).total == 1

    @pytest.mark.asyncio
    async def test_upsert_many_last_duplicate_wins(self, backend: SqliteFtsBackend):
        count = await backend.upsert_many(
            "products", [_doc("1", name="nokia"), _doc("2", name="htc"), _doc("1", name="samsung")]
        )

        assert count == 2
        page = await backend.query("products", 'name : "samsung" OR name : "htc"', fetch=["name"])
        assert {h.key: h.fields["name"] for h in page.hits} == {"1": "samsung", "2": "htc"}

    @pytest.mark.asyncio
    async def test_delete(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="iphone"))
        await backend.delete("products", "1")
        await backend.delete("products", "missing")

        assert (await backend.query("products", 'name : "iphone"')).total == 0

    @pytest.mark.asyncio
    async def test_clear_keeps_namespace_queryable(self, backend: SqliteFtsBackend):
        await backend.upsert_many("products", [_doc("1", name="iphone"), _doc("2", name="htc")])
        await backend.clear("products")

        page = await backend.query("products", '__type : "products"')
        assert page.hits == []
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_multi_value_field_round_trips(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="palmpre", tags=["discontinued", "worst phone ever"]))

        page = await backend.query("products", 'tags : "worst phone ever"', fetch=["tags", "href"])
        assert page.hits[0].fields == {"tags": ["discontinued", "worst phone ever"], "href": None}

    @pytest.mark.asyncio
    async def test_phrase_does_not_span_values(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="blackberry", tags=["decent", "businessmen love it"]))

        assert (await backend.query("products", 'tags : "decent businessmen"')).total == 0
        assert (await backend.query("products", 'tags : "businessmen love"')).total == 1
        assert (await backend.query("products", 'tags : "decent" AND tags : "businessmen"')).total == 1


# ---------------------------------------------------------------------------
# 3. Queries
# ---------------------------------------------------------------------------


class TestQuery:
    """MATCH queries, pagination and snippets."""

    @pytest.mark.asyncio
    async def test_hits_without_fetch_carry_no_fields(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="iphone"))

        page = await backend.query("products", 'name : "iphone"')

        assert page.hits[0].key == "1"
        assert page.hits[0].fields is None
        assert page.hits[0].score is not None

    @pytest.mark.asyncio
    async def test_accents_and_case_are_folded(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="Café Crème"))
        assert (await backend.query("products", 'name : "cafe creme"')).total == 1

    @pytest.mark.asyncio
    async def test_pagination_total(self, backend: SqliteFtsBackend):
        await backend.upsert_many("products", [_doc(str(i), tags="decent") for i in range(5)])

        page = await backend.query("products", 'tags : "decent"', limit=2, offset=4)

        assert page.total == 5
        assert len(page.hits) == 1

    @pytest.mark.asyncio
    async def test_snippets_only_for_matching_fields(self, backend: SqliteFtsBackend):
        await backend.upsert(
            "products", _doc("1", name="iphone", description="Puts even more features at your fingertips")
        )

        page = await backend.query(
            "products", '{name description} : "features"', snippets=["description", "name"]
        )

        assert page.hits[0].snippets == {"description": "Puts even more <b>features</b> at your fingertips"}

    @pytest.mark.asyncio
    async def test_marker_in_stored_text_is_not_a_match(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="widget", description="use <b> tags"))

        page = await backend.query("products", 'name : "widget"', snippets=["description", "name"])

        assert page.hits[0].snippets == {"name": "<b>widget</b>"}

    @pytest.mark.asyncio
    async def test_multi_value_snippet_hides_separator(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="palmpre", tags=["discontinued", "worst phone ever"]))

        page = await backend.query("products", 'tags : "worst"', snippets=["tags"])

        assert page.hits[0].snippets == {"tags": "discontinued\n<b>worst</b> phone ever"}

    @pytest.mark.asyncio
    async def test_reserved_characters_are_not_indexed(self, backend: SqliteFtsBackend):
        await backend.upsert("products", _doc("1", name="palm\ue001pre", description="forged \ue001match\ue002"))

        page = await backend.query("products", 'name : "palmpre"', fetch=["name"], snippets=["description"])

        assert page.total == 1
        assert page.hits[0].fields == {"name": "palm\ue001pre"}
        assert page.hits[0].snippets == {}

    @pytest.mark.asyncio
    async def test_custom_snippet_markers(self, fts_backend: SqliteFtsBackend):
        backend = SqliteFtsBackend(fts_backend._engine, snippet_start="[", snippet_stop="]")
        await backend.ensure_namespace("products", FIELDS)
        await backend.upsert("products", _doc("1", name="iphone"))

        page = await backend.query("products", 'name : "iphone"', snippets=["name"])
        assert page.hits[0].snippets == {"name": "[iphone]"}


# ---------------------------------------------------------------------------
# 4. Error classification
# ---------------------------------------------------------------------------


class TestErrors:
    """SQLite errors map onto backend errors."""

    @pytest.mark.asyncio
    async def test_syntax_error_is_malformed_query(self, backend: SqliteFtsBackend):
        with pytest.raises(MalformedBackendQuery) as exc_info:
            await backend.query("products", 'name : "iphone" AND')
        assert exc_info.value.query == 'name : "iphone" AND'

    @pytest.mark.asyncio
    async def test_unknown_column_is_malformed_query(self, backend: SqliteFtsBackend):
        with pytest.raises(MalformedBackendQuery):
            await backend.query("products", 'price : "5"')

    @pytest.mark.asyncio
    async def test_other_operational_errors_are_unavailable(self, backend: SqliteFtsBackend):
        error = OperationalError("SELECT 1", {}, Exception("database is locked"))
        with patch.object(AsyncEngine, "connect", side_effect=error):
            with pytest.raises(BackendUnavailable):
                await backend.query("products", 'name : "iphone"')

    @pytest.mark.asyncio
    async def test_table_really_exists(self, backend: SqliteFtsBackend):
        async with backend._engine.connect() as conn:
            result = await conn.execute(text("SELECT name FROM sqlite_master WHERE name = 'fts_products'"))
            assert result.scalar() == "fts_products"
