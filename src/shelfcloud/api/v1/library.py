"""Saved books endpoints.

Signed-in users can keep books on a personal shelf. Both endpoints need an
identity; anonymous callers get 401.
"""

import json
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from shelfcloud.core.logging import get_logger
from shelfcloud.dependencies import get_current_user_id, get_db_session
from shelfcloud.models.saved_book import SavedBook
from shelfcloud.repositories.saved_book import SavedBookRepository
from shelfcloud.schemas.common import ErrorResponse
from shelfcloud.schemas.library import (
    SaveBookRequest,
    SavedBookListResponse,
    SavedBookResponse,
)
from shelfcloud.services.google_books import CachedItem

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/saved",
    response_model=SavedBookListResponse,
    summary="List saved books",
    responses={401: {"model": ErrorResponse, "description": "Not authenticated"}},
)
async def list_saved_books(
    user_id: Annotated[str, Depends(get_current_user_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 100,
) -> SavedBookListResponse:
    """Get the caller's saved books, most recently saved first."""
    books = await SavedBookRepository(session).list_for_user(
        user_id, offset=offset, limit=limit
    )
    return SavedBookListResponse(
        items=[SavedBookResponse.model_validate(book) for book in books]
    )


@router.post(
    "/saved",
    response_model=SavedBookResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Save a book",
    responses={401: {"model": ErrorResponse, "description": "Not authenticated"}},
)
async def save_book(
    request: SaveBookRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> SavedBookResponse:
    """Add a Google Books volume to the caller's shelf."""
    item = CachedItem.from_volume(request.book, identifier_fallback=True)
    info = request.book.get("volumeInfo") or {}

    book = await SavedBookRepository(session).create(
        SavedBook(
            user_id=user_id,
            external_id=item.external_id,
            title=item.title,
            authors_json=item.authors_json,
            cover_url=item.cover_url,
            info_url=item.info_url,
            published_date=str(info.get("publishedDate") or ""),
            access_info_json=json.dumps(
                request.book.get("accessInfo") or {}, ensure_ascii=False
            ),
        )
    )

    logger.info("book_saved", user_id=user_id, external_id=item.external_id)
    return SavedBookResponse.model_validate(book)
