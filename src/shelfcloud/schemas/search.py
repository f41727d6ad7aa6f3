"""Search and ingest API schemas.

Volumes are passed through as the JSON documents Google Books returns, so
item lists are typed as plain dictionaries.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shelfcloud.services.search import SearchOutcome

# Largest batch accepted by the bulk ingest endpoint
MAX_INGEST_ITEMS = 40

# Highest page number accepted; keeps offsets within 32-bit integers
MAX_PAGE = 1000


# =============================================================================
# Search Responses
# =============================================================================


class LocalSearchResponse(BaseModel):
    """One page of volumes from the item store."""

    items: list[dict[str, Any]] = Field(..., description="Volume documents")
    total_items: int = Field(..., ge=0, description="Total matches for the query")
    page: int = Field(..., ge=1, description="Current page number")
    page_size: int = Field(..., ge=1, description="Results per page")


class BookSearchResponse(LocalSearchResponse):
    """Search response tagged with where the results came from."""

    from_cache: bool = Field(..., description="Served without calling Google Books")
    stale: bool = Field(False, description="Served from rows past the freshness window")
    background_refresh_triggered: bool = Field(
        False, description="A refresh of this page is running in the background"
    )
    rate_limited: bool = Field(
        False, description="Anonymous quota spent; results come from the store"
    )
    message: str | None = Field(None, description="Notice for the caller")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [
                    {
                        "id": "zyTCAlFPjgYC",
                        "volumeInfo": {
                            "title": "Dune",
                            "authors": ["Frank Herbert"],
                        },
                        "accessInfo": {},
                    }
                ],
                "total_items": 1184,
                "page": 1,
                "page_size": 20,
                "from_cache": False,
                "stale": False,
                "background_refresh_triggered": False,
                "rate_limited": False,
                "message": None,
            }
        }
    )

    @classmethod
    def from_outcome(cls, outcome: SearchOutcome) -> "BookSearchResponse":
        return cls(
            items=outcome.items,
            total_items=outcome.total_items,
            page=outcome.page,
            page_size=outcome.page_size,
            from_cache=outcome.from_cache,
            stale=outcome.stale,
            background_refresh_triggered=outcome.background_refresh_triggered,
            rate_limited=outcome.rate_limited,
            message=outcome.message,
        )


# =============================================================================
# Bulk Ingest
# =============================================================================


class CacheIngestRequest(BaseModel):
    """Volumes reported by a client for caching.

    Batches longer than ``MAX_INGEST_ITEMS`` are truncated, not rejected.
    """

    items: list[dict[str, Any]] = Field(
        default_factory=list, description="Google Books volume documents"
    )


class CacheIngestResponse(BaseModel):
    """Result of a bulk ingest."""

    message: str = Field(..., description="'ok', or 'no items' for an empty batch")
    cached: int = Field(..., ge=0, description="Items written")
    skipped: int = Field(0, ge=0, description="Items without an identifier")
