# @TASK P3-T3.2 - SQLite FTS5 search backend
# @TEST tests/test_sqlite_backend.py

"""SQLite FTS5 search backend.

Each namespace lives in its own FTS5 virtual table ``fts_<namespace>``::

    __key UNINDEXED | __doc UNINDEXED | __type | <field> | <field> | ...

``__doc`` keeps the JSON document (multi-value fields stay lists) so field
projection returns exactly what was indexed.  Multi-value fields are indexed
with a private-use separator token between values, so a phrase never spans
two values; the ``unicode61`` tokenizer lowercases and splits every value
into its own tokens.  ``__type`` holds the namespace so a query
made only of exclusions still has something to subtract from.

Snippets come from FTS5's ``snippet()`` auxiliary function, highlighted with
private-use sentinels that are swapped for the display markers afterwards.
An excerpt without a sentinel means the field did not match and is dropped.
Those characters are stripped from indexed text, so stored values cannot
forge a separator or a highlight.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Iterable, Sequence

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from searchbind.backends.base import Hit, HitPage, SearchBackend
from searchbind.constants import TYPE_FIELD
from searchbind.errors import BackendUnavailable, MalformedBackendQuery
from searchbind.search.dialects import Fts5Dialect
from searchbind.search.mapper import IndexDocument

logger = logging.getLogger(__name__)

_KEY_COLUMN = "__key"
_DOC_COLUMN = "__doc"
_FIXED_COLUMNS: tuple[str, ...] = (_KEY_COLUMN, _DOC_COLUMN, TYPE_FIELD)
_TOKENIZER = "unicode61 remove_diacritics 2"

# unicode61 treats private-use characters (category Co) as token characters,
# so the separator is indexed as a word of its own between values.
_SEPARATOR_TOKEN = "\ue000"
_MULTI_VALUE_SEPARATOR = f"\n{_SEPARATOR_TOKEN}\n"
_HIGHLIGHT_START = "\ue001"
_HIGHLIGHT_STOP = "\ue002"
_RESERVED_CHARS = str.maketrans("", "", _SEPARATOR_TOKEN + _HIGHLIGHT_START + _HIGHLIGHT_STOP)

# SQLite messages that mean the MATCH expression itself was rejected.
_QUERY_ERROR_MARKERS: tuple[str, ...] = (
    "fts5: syntax error",
    "no such column",
    "unknown special query",
    "unterminated string",
    "fts5: phrase queries are not supported",
)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def table_name(namespace: str) -> str:
    """Return the FTS5 table name for a namespace."""
    return f"fts_{namespace}"


class SqliteFtsBackend(SearchBackend):
    """Search backend storing namespaces as SQLite FTS5 tables.

    Args:
        engine: An async SQLAlchemy engine (``sqlite+aiosqlite://...``) or a URL.
        snippet_start: Marker inserted before highlighted terms.
        snippet_stop: Marker inserted after highlighted terms.
        snippet_ellipsis: Text marking truncated snippet edges.
        snippet_tokens: Maximum number of tokens per snippet (1-64).
    """

    dialect = Fts5Dialect()

    def __init__(
        self,
        engine: AsyncEngine | str,
        snippet_start: str = "<b>",
        snippet_stop: str = "</b>",
        snippet_ellipsis: str = "…",
        snippet_tokens: int = 32,
    ) -> None:
        self._engine: AsyncEngine = create_async_engine(engine) if isinstance(engine, str) else engine
        self._owns_engine = isinstance(engine, str)
        self._snippet_start = snippet_start
        self._snippet_stop = snippet_stop
        self._snippet_ellipsis = snippet_ellipsis
        self._snippet_tokens = max(1, min(64, snippet_tokens))
        self._fields: dict[str, tuple[str, ...]] = {}
        self._ensure_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def ensure_namespace(self, namespace: str, fields: Sequence[str]) -> None:
        """Create the namespace table, recreating it if its columns changed.

        Concurrent callers are serialized; the first one creates the table
        and the rest find it cached.
        """
        fields = tuple(fields)
        if self._fields.get(namespace) == fields:
            return

        async with self._ensure_lock:
            if self._fields.get(namespace) == fields:
                return
            await self._create_table(namespace, fields)
            self._fields[namespace] = fields

    async def _create_table(self, namespace: str, fields: tuple[str, ...]) -> None:
        table = _quote(table_name(namespace))
        expected = [*_FIXED_COLUMNS, *fields]
        async with self._guard():
            async with self._engine.begin() as conn:
                result = await conn.execute(text(f"PRAGMA table_info({table})"))
                existing = [row[1] for row in result.fetchall()]

                if existing and existing != expected:
                    logger.warning(
                        "Recreating index table for '%s': columns changed from %s to %s (reindex required)",
                        namespace,
                        existing,
                        expected,
                    )
                    await conn.execute(text(f"DROP TABLE {table}"))
                    existing = []

                if not existing:
                    columns = ", ".join(
                        [
                            f"{_quote(_KEY_COLUMN)} UNINDEXED",
                            f"{_quote(_DOC_COLUMN)} UNINDEXED",
                            _quote(TYPE_FIELD),
                            *(_quote(name) for name in fields),
                        ]
                    )
                    await conn.execute(
                        text(
                            f"CREATE VIRTUAL TABLE IF NOT EXISTS {table} "
                            f"USING fts5({columns}, tokenize = '{_TOKENIZER}')"
                        )
                    )
                    logger.info("Created index table for namespace '%s' (%d fields)", namespace, len(fields))

    def _fields_for(self, namespace: str) -> tuple[str, ...]:
        try:
            return self._fields[namespace]
        except KeyError:
            raise RuntimeError(f"Namespace '{namespace}' has not been ensured on this backend") from None

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def upsert(self, namespace: str, document: IndexDocument) -> None:
        await self.upsert_many(namespace, [document])

    async def upsert_many(self, namespace: str, documents: Iterable[IndexDocument]) -> int:
        fields = self._fields_for(namespace)
        table = _quote(table_name(namespace))
        column_list = ", ".join(_quote(name) for name in (*_FIXED_COLUMNS, *fields))
        placeholders = ", ".join([":key", ":doc", ":type", *(f":f{i}" for i in range(len(fields)))])
        delete_stmt = text(f"DELETE FROM {table} WHERE {_quote(_KEY_COLUMN)} = :key")
        insert_stmt = text(f"INSERT INTO {table} ({column_list}) VALUES ({placeholders})")

        # Last write wins when a batch repeats a key.
        rows = list({doc.key: self._row(namespace, fields, doc) for doc in documents}.values())
        if not rows:
            return 0

        async with self._guard():
            async with self._engine.begin() as conn:
                await conn.execute(delete_stmt, [{"key": row["key"]} for row in rows])
                await conn.execute(insert_stmt, rows)

        logger.debug("Upserted %d documents into '%s'", len(rows), namespace)
        return len(rows)

    @staticmethod
    def _row(namespace: str, fields: tuple[str, ...], document: IndexDocument) -> dict[str, str | None]:
        row: dict[str, str | None] = {
            "key": document.key,
            "doc": json.dumps(document.fields, ensure_ascii=False),
            "type": namespace,
        }
        for i, name in enumerate(fields):
            value = document.fields.get(name)
            if isinstance(value, list):
                value = _MULTI_VALUE_SEPARATOR.join(str(item).translate(_RESERVED_CHARS) for item in value)
            elif value is not None:
                value = str(value).translate(_RESERVED_CHARS)
            row[f"f{i}"] = value
        return row

    async def delete(self, namespace: str, key: str) -> None:
        self._fields_for(namespace)
        table = _quote(table_name(namespace))
        async with self._guard():
            async with self._engine.begin() as conn:
                await conn.execute(text(f"DELETE FROM {table} WHERE {_quote(_KEY_COLUMN)} = :key"), {"key": key})
        logger.debug("Deleted document '%s' from '%s'", key, namespace)

    async def clear(self, namespace: str) -> None:
        self._fields_for(namespace)
        table = _quote(table_name(namespace))
        async with self._guard():
            async with self._engine.begin() as conn:
                await conn.execute(text(f"DELETE FROM {table}"))
        logger.info("Cleared namespace '%s'", namespace)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def query(
        self,
        namespace: str,
        query: str,
        *,
        fetch: Sequence[str] = (),
        snippets: Sequence[str] = (),
        limit: int = 20,
        offset: int = 0,
    ) -> HitPage:
        fields = self._fields_for(namespace)
        table = _quote(table_name(namespace))

        columns = [f"{_quote(_KEY_COLUMN)} AS doc_key", f"{_quote(_DOC_COLUMN)} AS doc_json", "rank AS score"]
        for i, name in enumerate(snippets):
            column_index = len(_FIXED_COLUMNS) + fields.index(name)
            columns.append(f"snippet({table}, {column_index}, :hl_start, :hl_stop, :hl_ellipsis, :hl_tokens) AS s{i}")

        select_stmt = text(
            f"SELECT {', '.join(columns)} FROM {table} WHERE {table} MATCH :query "
            "ORDER BY rank, rowid LIMIT :limit OFFSET :offset"
        )
        count_stmt = text(f"SELECT count(*) FROM {table} WHERE {table} MATCH :query")
        params = {
            "query": query,
            "limit": limit,
            "offset": offset,
            "hl_start": _HIGHLIGHT_START,
            "hl_stop": _HIGHLIGHT_STOP,
            "hl_ellipsis": self._snippet_ellipsis,
            "hl_tokens": self._snippet_tokens,
        }

        async with self._guard(query=query):
            async with self._engine.connect() as conn:
                total = (await conn.execute(count_stmt, {"query": query})).scalar() or 0
                rows = (await conn.execute(select_stmt, params)).mappings().all()

        hits: list[Hit] = []
        for row in rows:
            hit_fields = None
            if fetch:
                stored = json.loads(row["doc_json"])
                hit_fields = {name: stored.get(name) for name in fetch}

            hit_snippets: dict[str, str] = {}
            for i, name in enumerate(snippets):
                excerpt = row[f"s{i}"]
                if excerpt and _HIGHLIGHT_START in excerpt:
                    hit_snippets[name] = self._display(excerpt)

            hits.append(Hit(key=row["doc_key"], fields=hit_fields, snippets=hit_snippets, score=row["score"]))

        logger.debug("Query on '%s' matched %d documents: %s", namespace, total, query)
        return HitPage(hits=hits, total=total)

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _display(self, excerpt: str) -> str:
        """Swap highlight sentinels for display markers and drop separator tokens."""
        return (
            excerpt.replace(_MULTI_VALUE_SEPARATOR, "\n")
            .replace(_SEPARATOR_TOKEN, "")
            .replace(_HIGHLIGHT_START, self._snippet_start)
            .replace(_HIGHLIGHT_STOP, self._snippet_stop)
        )

    @contextlib.asynccontextmanager
    async def _guard(self, query: str | None = None) -> AsyncIterator[None]:
        """Translate SQLAlchemy errors into backend errors."""
        try:
            yield
        except OperationalError as exc:
            detail = str(exc.orig) if exc.orig is not None else str(exc)
            if query is not None and any(marker in detail for marker in _QUERY_ERROR_MARKERS):
                raise MalformedBackendQuery(query, detail) from exc
            raise BackendUnavailable(f"SQLite index unavailable: {detail}") from exc
        except DBAPIError as exc:
            raise BackendUnavailable(f"SQLite index unavailable: {exc}") from exc
