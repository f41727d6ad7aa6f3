"""Google Books API client service.

Fetches one page of volumes for a text query. Volumes are kept as the
opaque documents Google returns; ``CachedItem`` is the column projection
used to persist them.

See: https://developers.google.com/books/docs/v1/using#PerformingSearch
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
import structlog

from shelfcloud.config import Settings, get_settings
from shelfcloud.models.base import utcnow

logger = structlog.get_logger(__name__)

# Google Books rejects maxResults above 40
MAX_RESULTS_CEILING = 40


# -----------------------------------------------------------------------------
# DTOs
# -----------------------------------------------------------------------------


@dataclass
class CachedItem:
    """A fetched volume, projected onto the persisted columns.

    ``raw_payload`` holds the complete upstream document so the item can be
    served again without losing fields that have no column of their own
    (accessInfo, saleInfo, ...).
    """

    external_id: str | None
    title: str
    authors: list[str]
    cover_url: str
    info_url: str
    raw_payload: dict[str, Any] | None
    fetched_at: datetime = field(default_factory=utcnow)

    @property
    def authors_json(self) -> str:
        """Authors serialized for storage and substring search."""
        return json.dumps(self.authors, ensure_ascii=False)

    @property
    def raw_json(self) -> str | None:
        if self.raw_payload is None:
            return None
        return json.dumps(self.raw_payload, ensure_ascii=False)

    @classmethod
    def from_volume(
        cls,
        volume: dict[str, Any],
        *,
        identifier_fallback: bool = False,
    ) -> "CachedItem":
        """Project a Google Books volume document.

        Args:
            volume: Volume document as returned by the API
            identifier_fallback: Use the first industry identifier (ISBN)
                when the document has no ``id``. Client-reported items
                sometimes lack one.
        """
        info = volume.get("volumeInfo") or {}
        image_links = info.get("imageLinks") or {}

        external_id = volume.get("id") or None
        if not external_id and identifier_fallback:
            identifiers = info.get("industryIdentifiers") or []
            if identifiers and isinstance(identifiers[0], dict):
                external_id = identifiers[0].get("identifier") or None

        return cls(
            external_id=str(external_id) if external_id else None,
            title=info.get("title") or "",
            authors=_author_list(info.get("authors")),
            cover_url=image_links.get("thumbnail")
            or image_links.get("smallThumbnail")
            or "",
            info_url=info.get("infoLink") or "",
            raw_payload=volume,
        )


def _author_list(authors: Any) -> list[str]:
    """Normalize ``authors``; a bare string is one author."""
    if isinstance(authors, str):
        return [authors] if authors else []
    if isinstance(authors, list):
        return [str(a) for a in authors if a]
    return []


@dataclass
class UpstreamPage:
    """One page of volumes plus the total Google reports for the query."""

    items: list[dict[str, Any]]
    total_items: int
    offset: int
    limit: int


def compact_volume(volume: dict[str, Any]) -> dict[str, Any]:
    """Reduce a volume to the fields kept in the memory cache."""
    return {
        "id": volume.get("id"),
        "volumeInfo": volume.get("volumeInfo"),
        "accessInfo": volume.get("accessInfo") or {},
    }


# -----------------------------------------------------------------------------
# Google Books Service
# -----------------------------------------------------------------------------


class GoogleBooksError(Exception):
    """Base exception for Google Books API errors."""

    pass


class GoogleBooksRateLimitError(GoogleBooksError):
    """Rate limit exceeded."""

    pass


class GoogleBooksService:
    """Async client for the Google Books volumes endpoint.

    One ``httpx.AsyncClient`` is shared by every request and background
    refresh; its timeout bounds each call. No retries are made.

    Usage:
        ```python
        service = GoogleBooksService()
        page = await service.fetch_page("dune", offset=0, limit=20)
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the service.

        Args:
            settings: Application settings (defaults to the cached settings)
        """
        self._settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None

    @property
    def _user_agent(self) -> str:
        """User-Agent header sent to Google."""
        return f"{self._settings.app_name}/{self._settings.app_version}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.google_books_base_url,
                timeout=self._settings.google_books_timeout,
                headers={"User-Agent": self._user_agent},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def fetch_page(
        self,
        query: str,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> UpstreamPage:
        """Fetch one page of search results.

        Args:
            query: Free-text query
            offset: Index of the first result (``startIndex``)
            limit: Page size, clamped to 1..40

        Returns:
            UpstreamPage with the raw volume documents

        Raises:
            GoogleBooksError: On network errors, non-success statuses or
                malformed payloads
        """
        limit = max(1, min(limit, MAX_RESULTS_CEILING))
        offset = max(0, offset)

        params: dict[str, Any] = {
            "q": query,
            "startIndex": offset,
            "maxResults": limit,
        }
        if self._settings.google_books_api_key is not None:
            params["key"] = self._settings.google_books_api_key.get_secret_value()

        client = await self._get_client()

        try:
            response = await client.get("/volumes", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                raise GoogleBooksRateLimitError("Rate limit exceeded") from e
            logger.error(
                "google_books_search_failed",
                status_code=e.response.status_code,
                query=query,
            )
            raise GoogleBooksError(
                f"API request failed: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            logger.error("google_books_request_error", error=str(e), query=query)
            raise GoogleBooksError(f"Request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise GoogleBooksError("Malformed response payload") from e

        return self._parse_page(data, offset=offset, limit=limit)

    # -------------------------------------------------------------------------
    # Private Methods - Response Parsing
    # -------------------------------------------------------------------------

    def _parse_page(self, data: Any, *, offset: int, limit: int) -> UpstreamPage:
        """Validate the volumes payload shape."""
        if not isinstance(data, dict):
            raise GoogleBooksError("Malformed response payload")

        items = data.get("items") or []
        if not isinstance(items, list):
            raise GoogleBooksError("Malformed response payload: items")
        items = [item for item in items if isinstance(item, dict)]

        try:
            total_items = int(data.get("totalItems") or len(items))
        except (TypeError, ValueError) as e:
            raise GoogleBooksError("Malformed response payload: totalItems") from e

        return UpstreamPage(
            items=items,
            total_items=total_items,
            offset=offset,
            limit=limit,
        )
