"""Book search endpoints.

Provides the cache-aside search over Google Books, a store-only search,
and bulk ingest of volumes reported by clients.
"""

import re
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from shelfcloud.core.exceptions import MissingQueryError, PersistenceError
from shelfcloud.core.logging import get_logger
from shelfcloud.dependencies import (
    SettingsDep,
    get_caller,
    get_item_store,
    get_search_service,
)
from shelfcloud.schemas.common import ErrorResponse
from shelfcloud.schemas.search import (
    MAX_INGEST_ITEMS,
    MAX_PAGE,
    BookSearchResponse,
    CacheIngestRequest,
    CacheIngestResponse,
    LocalSearchResponse,
)
from shelfcloud.services.google_books import CachedItem
from shelfcloud.services.item_store import ItemStore
from shelfcloud.services.search import Caller, SearchQuery, SearchService

logger = get_logger(__name__)

router = APIRouter()

MAX_QUERY_LENGTH = 200

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_query(raw: str | None) -> str:
    """Strip whitespace and control characters, then cap the length."""
    if not raw:
        return ""
    return _CONTROL_CHARS_RE.sub("", raw.strip())[:MAX_QUERY_LENGTH].strip()


# =============================================================================
# Search Endpoints
# =============================================================================


@router.get(
    "/search",
    response_model=BookSearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Search for books",
    description=(
        "Search Google Books, answering from the memory cache or the local "
        "store when possible."
    ),
    responses={
        200: {"description": "Search results"},
        400: {"model": ErrorResponse, "description": "Missing query"},
        502: {"model": ErrorResponse, "description": "External service error"},
    },
)
async def search_books(
    search: Annotated[SearchService, Depends(get_search_service)],
    caller: Annotated[Caller, Depends(get_caller)],
    settings: SettingsDep,
    q: Annotated[str | None, Query(description="Search text")] = None,
    page: Annotated[int, Query(ge=1, le=MAX_PAGE, description="Page number")] = 1,
    page_size: Annotated[
        int, Query(ge=1, description="Results per page (capped at 40)")
    ] = 20,
    prefer_fresh: Annotated[
        bool, Query(description="Skip both cache tiers and ask Google Books")
    ] = False,
) -> BookSearchResponse:
    """Search for books.

    Answers from the first tier that can: memory cache, local store
    (refreshing stale rows in the background), then Google Books.
    Anonymous sessions get a fixed number of Google Books calls, after
    which results come from the local store.
    """
    query = sanitize_query(q)
    if not query:
        raise MissingQueryError()

    page_size = min(page_size, settings.max_page_size)
    logger.info(
        "search_books_request",
        query=query,
        page=page,
        page_size=page_size,
        prefer_fresh=prefer_fresh,
        authenticated=caller.authenticated,
    )

    outcome = await search.search(
        SearchQuery(
            query=query,
            page=page,
            page_size=page_size,
            prefer_fresh=prefer_fresh,
        ),
        caller,
    )

    logger.info(
        "search_books_success",
        source=outcome.source.value,
        total_items=outcome.total_items,
        results_returned=len(outcome.items),
    )
    return BookSearchResponse.from_outcome(outcome)


@router.get(
    "/local-search",
    response_model=LocalSearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Search stored books",
    description="Search only the local store. Never calls Google Books.",
    responses={
        200: {"description": "Search results"},
        500: {"model": ErrorResponse, "description": "Store unavailable"},
    },
)
async def local_search(
    store: Annotated[ItemStore, Depends(get_item_store)],
    settings: SettingsDep,
    q: Annotated[str | None, Query(description="Search text; empty matches all")] = None,
    page: Annotated[int, Query(ge=1, le=MAX_PAGE, description="Page number")] = 1,
    page_size: Annotated[
        int, Query(ge=1, description="Results per page (capped at 40)")
    ] = 20,
) -> LocalSearchResponse:
    """Search previously fetched books in the local store."""
    query = sanitize_query(q)
    page_size = min(page_size, settings.max_page_size)

    result = await store.search(
        query, limit=page_size, offset=(page - 1) * page_size
    )

    return LocalSearchResponse(
        items=result.items,
        total_items=result.total_items,
        page=page,
        page_size=page_size,
    )


# =============================================================================
# Ingest Endpoints
# =============================================================================


@router.post(
    "/cache",
    response_model=CacheIngestResponse,
    response_model_exclude_unset=True,
    status_code=status.HTTP_200_OK,
    summary="Cache reported volumes",
    description=(
        f"Store up to {MAX_INGEST_ITEMS} Google Books volumes fetched by a "
        "client. Longer batches are truncated."
    ),
    responses={
        200: {"description": "Volumes cached"},
        500: {"model": ErrorResponse, "description": "Some volumes failed"},
    },
)
async def cache_books(
    request: CacheIngestRequest,
    store: Annotated[ItemStore, Depends(get_item_store)],
) -> CacheIngestResponse:
    """Upsert client-reported volumes into the local store.

    Volumes without an ``id`` fall back to their first industry identifier;
    volumes with neither are skipped.
    """
    items = request.items[:MAX_INGEST_ITEMS]
    if not items:
        return CacheIngestResponse(message="no items", cached=0)

    report = await store.upsert_many(
        CachedItem.from_volume(volume, identifier_fallback=True) for volume in items
    )

    logger.info(
        "cache_books_ingested",
        received=len(request.items),
        cached=len(report.upserted),
        skipped=report.skipped,
        failed=len(report.failed),
    )

    if report.failed:
        raise PersistenceError(
            message="Failed to cache some books", failed_ids=report.failed
        )

    return CacheIngestResponse(
        message="ok", cached=len(report.upserted), skipped=report.skipped
    )
