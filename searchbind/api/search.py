# @TASK P4-T4.3 - Search API endpoints
# @TEST tests/test_api_search.py

"""Search API endpoints.

Provides:
- ``GET /search/{namespace}`` -- Search a namespace with free text and/or
  field conditions.
- ``POST /search/{namespace}/reindex`` -- Rebuild a namespace from the datastore.
- ``DELETE /search/{namespace}`` -- Remove every document from a namespace.

``conditions`` is a JSON object such as ``{"tags": "decent", "-href": "apple"}``;
``fetch`` and ``snippets`` are comma-separated field names.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel

from searchbind.errors import (
    BackendError,
    BackendUnavailable,
    InvalidSchema,
    SearchBindError,
    SearchRequestError,
    UnknownNamespace,
)
from searchbind.search.engine import SearchEngine
from searchbind.search.hydrator import resolve_mode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class SearchResultResponse(BaseModel):
    """A single search result in the API response."""

    key: str
    fields: dict[str, Any]
    snippets: dict[str, str] = {}


class SearchResponse(BaseModel):
    """Search API response containing results and metadata."""

    namespace: str
    query: str
    mode: str
    total: int
    results: list[SearchResultResponse]


class ReindexResponse(BaseModel):
    """Summary of a reindex run."""

    namespace: str
    indexed: int
    failed: int
    batches: int


# ---------------------------------------------------------------------------
# Dependencies & helpers
# ---------------------------------------------------------------------------


def get_search_engine(request: Request) -> SearchEngine:
    """Return the SearchEngine stored on the application state."""
    engine = getattr(request.app.state, "search_engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Search engine not configured")
    return engine


def _parse_conditions(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        conditions = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"conditions is not valid JSON: {exc.msg}",
        ) from exc
    if not isinstance(conditions, dict):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="conditions must be a JSON object",
        )
    return conditions


def _split_fields(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [name.strip() for name in raw.split(",") if name.strip()]


def _to_http_error(exc: SearchBindError) -> HTTPException:
    """Map a searchbind error onto an HTTP error response."""
    if isinstance(exc, UnknownNamespace):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, SearchRequestError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, InvalidSchema):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, BackendUnavailable):
        logger.warning("Search backend unavailable: %s", exc)
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Search backend unavailable")
    if isinstance(exc, BackendError):
        logger.error("Search backend error: %s", exc)
    else:
        logger.error("Search failed: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Search failed")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/{namespace}", response_model=SearchResponse)
async def search(
    namespace: str,
    q: str = Query("", description="Free-text search term"),
    conditions: str | None = Query(None, description="JSON object of field conditions"),
    fetch: str | None = Query(None, description="Comma-separated fields to return from the index"),
    snippets: str | None = Query(None, description="Comma-separated fields to highlight"),
    limit: int | None = Query(None, description="Maximum number of results"),
    offset: int = Query(0, description="Number of results to skip for pagination"),
    engine: SearchEngine = Depends(get_search_engine),  # noqa: B008
) -> SearchResponse:
    """Search a namespace.

    Args:
        namespace: Registered namespace to search.
        q: Free-text term (may be empty when conditions are given).
        conditions: JSON object of field conditions.
        fetch: Fields whose indexed values are returned.
        snippets: Fields whose highlighted excerpts are returned.
        limit: Maximum number of results (defaults to SEARCH_DEFAULT_LIMIT).
        offset: Number of results to skip.
        engine: Injected search engine.

    Returns:
        SearchResponse with the results, query echo and total match count.
    """
    parsed_conditions = _parse_conditions(conditions)
    fetch_fields = _split_fields(fetch)
    snippet_fields = _split_fields(snippets)
    logger.info(
        "Search request: namespace=%s, query=%r, conditions=%r, limit=%s, offset=%d",
        namespace,
        q,
        parsed_conditions,
        limit,
        offset,
    )

    try:
        page = await engine.search_page(
            namespace,
            q,
            conditions=parsed_conditions,
            fetch=fetch_fields,
            snippets=snippet_fields,
            limit=limit,
            offset=offset,
        )
    except SearchBindError as exc:
        raise _to_http_error(exc) from exc

    return SearchResponse(
        namespace=namespace,
        query=q,
        mode=resolve_mode(fetch_fields, snippet_fields).value,
        total=page.total,
        results=[
            SearchResultResponse(key=r.key, fields=r.fields, snippets=r.snippets)
            for r in page.results
        ],
    )


@router.post("/{namespace}/reindex", response_model=ReindexResponse)
async def reindex(
    namespace: str,
    engine: SearchEngine = Depends(get_search_engine),  # noqa: B008
) -> ReindexResponse:
    """Rebuild a namespace from the datastore."""
    logger.info("Reindex request: namespace=%s", namespace)
    try:
        result = await engine.reindex(namespace)
    except SearchBindError as exc:
        raise _to_http_error(exc) from exc

    return ReindexResponse(
        namespace=namespace,
        indexed=result.indexed,
        failed=result.failed,
        batches=result.batches,
    )


@router.delete("/{namespace}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_index(
    namespace: str,
    engine: SearchEngine = Depends(get_search_engine),  # noqa: B008
) -> Response:
    """Remove every document from a namespace."""
    logger.info("Clear request: namespace=%s", namespace)
    try:
        await engine.clear_index(namespace)
    except SearchBindError as exc:
        raise _to_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
