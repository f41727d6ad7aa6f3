"""Saved books and session API schemas."""

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from shelfcloud.schemas.common import BaseSchema

# =============================================================================
# Saved Books
# =============================================================================


class SaveBookRequest(BaseModel):
    """Book to add to the caller's shelf, as a Google Books volume."""

    book: dict[str, Any] = Field(..., description="Volume document")


class SavedBookResponse(BaseSchema):
    """A saved book."""

    id: UUID
    external_id: str | None = None
    title: str
    authors: list[str] = Field(default_factory=list, validation_alias="authors_json")
    cover_url: str = ""
    info_url: str = ""
    published_date: str = ""
    access_info: dict[str, Any] = Field(
        default_factory=dict, validation_alias="access_info_json"
    )
    saved_at: datetime

    @field_validator("authors", mode="before")
    @classmethod
    def _decode_authors(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value or "[]")
        return value

    @field_validator("access_info", mode="before")
    @classmethod
    def _decode_access_info(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value or "{}")
        return value


class SavedBookListResponse(BaseModel):
    """The caller's saved books, most recent first."""

    items: list[SavedBookResponse]


# =============================================================================
# Session
# =============================================================================


class SessionInfoResponse(BaseModel):
    """Identity and quota usage of the current session."""

    user_id: str | None = None
    authenticated: bool
    upstream_calls: int = Field(..., ge=0)
    upstream_calls_allowed: int = Field(..., ge=0)
