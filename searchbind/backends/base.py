# @TASK P3-T3.1 - Abstract search backend interface
"""Abstract base class for search backends.

A backend stores index documents per namespace and runs translated query
strings against them.  Implementations must raise
:class:`~searchbind.errors.BackendUnavailable` for transport failures and
:class:`~searchbind.errors.MalformedBackendQuery` when a query string is
rejected, and must not retry on their own.

Usage:
    class MyBackend(SearchBackend):
        dialect = LuceneDialect()

        async def ensure_namespace(self, namespace, fields) -> None:
            ...
        async def upsert(self, namespace, document) -> None:
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, Field

from searchbind.search.dialects import QueryDialect
from searchbind.search.mapper import IndexDocument


class Hit(BaseModel):
    """A single backend match.

    Attributes:
        key: Key of the matching document.
        fields: Stored values of the requested fields, or None when no
            fields were requested.
        snippets: Highlighted excerpts for requested snippet fields that
            actually matched.
        score: Backend relevance score, when reported.
    """

    key: str
    fields: dict[str, Any] | None = None
    snippets: dict[str, str] = Field(default_factory=dict)
    score: float | None = None


class HitPage(BaseModel):
    """One page of ranked hits plus the total number of matches."""

    hits: list[Hit]
    total: int


class SearchBackend(ABC):
    """Transport to a search index service.

    All methods are awaited request/response calls.  ``dialect`` names the
    query language the backend's :meth:`query` expects.
    """

    dialect: QueryDialect

    @abstractmethod
    async def ensure_namespace(self, namespace: str, fields: Sequence[str]) -> None:
        """Create the namespace partition if needed. Idempotent."""
        ...

    @abstractmethod
    async def upsert(self, namespace: str, document: IndexDocument) -> None:
        """Insert or replace one document."""
        ...

    async def upsert_many(self, namespace: str, documents: Iterable[IndexDocument]) -> int:
        """Insert or replace several documents, returning how many were sent.

        Backends with a batch endpoint should override this.
        """
        count = 0
        for document in documents:
            await self.upsert(namespace, document)
            count += 1
        return count

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> None:
        """Delete one document by key. Deleting a missing key is not an error."""
        ...

    @abstractmethod
    async def clear(self, namespace: str) -> None:
        """Delete every document in the namespace."""
        ...

    @abstractmethod
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
        """Run a query string and return ranked hits.

        Args:
            namespace: Namespace to search.
            query: Query string in this backend's dialect.
            fetch: Fields whose stored values should be returned.
            snippets: Fields for which highlighted excerpts should be generated.
            limit: Maximum number of hits.
            offset: Number of hits to skip.

        Returns:
            A HitPage ordered by relevance.

        Raises:
            BackendUnavailable: If the backend cannot be reached.
            MalformedBackendQuery: If the backend rejects the query string.
        """
        ...

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release connections held by the backend."""
