# @TASK P3-T3.3 - Remote search service backend (IndexTank-style REST API)
# @TEST tests/test_http_backend.py

"""HTTP client for a remote search index service.

Speaks an IndexTank-style REST protocol::

    PUT    /v1/indexes/{ns}                      create ({"fields": [...]}; 409 = exists)
    DELETE /v1/indexes/{ns}                      drop (clear = drop + create)
    PUT    /v1/indexes/{ns}/docs                 add/replace ({"docid", "fields"} or a list)
    DELETE /v1/indexes/{ns}/docs?docid=<key>     remove
    GET    /v1/indexes/{ns}/search?q=&start=&len=&fetch=a,b&snippet=c

Search responses look like::

    {"matches": 2, "results": [{"docid": "7", "name": "iphone", "snippet_description": "..."}]}

Usage::

    async with HttpSearchBackend("http://search:8080", api_key="...") as backend:
        page = await backend.query("products", "name:(iphone)")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

import httpx

from searchbind.backends.base import Hit, HitPage, SearchBackend
from searchbind.constants import TYPE_FIELD
from searchbind.errors import BackendError, BackendUnavailable, MalformedBackendQuery
from searchbind.search.dialects import LuceneDialect
from searchbind.search.mapper import IndexDocument

logger = logging.getLogger(__name__)

_SNIPPET_PREFIX = "snippet_"


class HttpSearchBackend(SearchBackend):
    """Async client for an IndexTank-style search service.

    Args:
        url: Base URL of the service (trailing slash is stripped).
        api_key: Optional bearer token sent with every request.
        timeout: Request timeout in seconds.
        client: Pre-built httpx client (mainly for tests); the backend
            creates and owns one when omitted.
    """

    dialect = LuceneDialect()

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url: str = url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._owns_client = client is None
        self._client: httpx.AsyncClient = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._fields: dict[str, tuple[str, ...]] = {}

    async def __aenter__(self) -> HttpSearchBackend:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def ensure_namespace(self, namespace: str, fields: Sequence[str]) -> None:
        fields = tuple(fields)
        if self._fields.get(namespace) == fields:
            return
        await self._create_index(namespace, fields)
        self._fields[namespace] = fields

    async def _create_index(self, namespace: str, fields: tuple[str, ...]) -> None:
        response = await self._send("PUT", self._index_path(namespace), json={"fields": list(fields)})
        if response.status_code == 409:
            logger.debug("Index '%s' already exists", namespace)
            return
        self._raise_for_status(response)
        logger.info("Created remote index '%s' (%d fields)", namespace, len(fields))

    async def clear(self, namespace: str) -> None:
        fields = self._fields.get(namespace)
        if fields is None:
            raise RuntimeError(f"Namespace '{namespace}' has not been ensured on this backend")
        response = await self._send("DELETE", self._index_path(namespace))
        if response.status_code != 404:
            self._raise_for_status(response)
        await self._create_index(namespace, fields)
        logger.info("Cleared remote index '%s'", namespace)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def upsert(self, namespace: str, document: IndexDocument) -> None:
        response = await self._send("PUT", self._docs_path(namespace), json=self._payload(namespace, document))
        self._raise_for_status(response)
        logger.debug("Upserted document '%s' into '%s'", document.key, namespace)

    async def upsert_many(self, namespace: str, documents: Iterable[IndexDocument]) -> int:
        payload = [self._payload(namespace, document) for document in documents]
        if not payload:
            return 0
        response = await self._send("PUT", self._docs_path(namespace), json=payload)
        self._raise_for_status(response)
        logger.debug("Upserted %d documents into '%s'", len(payload), namespace)
        return len(payload)

    async def delete(self, namespace: str, key: str) -> None:
        response = await self._send("DELETE", self._docs_path(namespace), params={"docid": key})
        if response.status_code != 404:
            self._raise_for_status(response)
        logger.debug("Deleted document '%s' from '%s'", key, namespace)

    @staticmethod
    def _payload(namespace: str, document: IndexDocument) -> dict[str, Any]:
        return {"docid": document.key, "fields": {**document.fields, TYPE_FIELD: namespace}}

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
        params: dict[str, str | int] = {"q": query, "start": offset, "len": limit}
        if fetch:
            params["fetch"] = ",".join(fetch)
        if snippets:
            params["snippet"] = ",".join(snippets)

        response = await self._send("GET", f"{self._index_path(namespace)}/search", params=params)
        if response.status_code == 400:
            raise MalformedBackendQuery(query, response.text)
        self._raise_for_status(response)

        data = response.json()
        hits: list[Hit] = []
        for result in data.get("results", []):
            hit_fields = {name: result.get(name) for name in fetch} if fetch else None
            hit_snippets = {
                name: result[_SNIPPET_PREFIX + name] for name in snippets if result.get(_SNIPPET_PREFIX + name)
            }
            score = result.get("query_relevance_score")
            hits.append(
                Hit(
                    key=str(result["docid"]),
                    fields=hit_fields,
                    snippets=hit_snippets,
                    score=float(score) if score is not None else None,
                )
            )

        total = int(data.get("matches", len(hits)))
        logger.debug("Query on '%s' matched %d documents: %s", namespace, total, query)
        return HitPage(hits=hits, total=total)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _index_path(self, namespace: str) -> str:
        return f"{self._url}/v1/indexes/{namespace}"

    def _docs_path(self, namespace: str) -> str:
        return f"{self._index_path(namespace)}/docs"

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to BackendUnavailable."""
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Search service timed out (%s %s)", method, url)
            raise BackendUnavailable(f"Search service timed out: {method} {url}") from exc
        except httpx.TransportError as exc:
            logger.warning("Search service unreachable (%s %s): %s", method, url, exc)
            raise BackendUnavailable(f"Search service unreachable: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code >= 500:
            raise BackendUnavailable(f"Search service error {response.status_code}: {response.text}")
        if response.status_code >= 400:
            raise BackendError(f"Search service rejected request ({response.status_code}): {response.text}")
