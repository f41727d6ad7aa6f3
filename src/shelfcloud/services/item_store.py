"""ItemStore - the persistent tier of the search cache.

Wraps CachedBookRepository with session scoping and the failure policy:
- every operation opens its own session from the factory inside
  ``async with``, so the connection returns to the pool on all paths and
  detached background refreshes never share a request's session
- each upsert is its own statement and transaction; one failing item is
  rolled back and reported without touching the others
- rows are turned back into volume documents, preferring the stored raw
  document over the discrete columns
"""

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shelfcloud.core.exceptions import PersistenceError
from shelfcloud.models.base import as_utc
from shelfcloud.models.cached_book import CachedBook
from shelfcloud.repositories.cached_book import CachedBookRepository
from shelfcloud.services.google_books import CachedItem

logger = structlog.get_logger(__name__)

# Database errors that may surface from a pooled connection
STORE_ERRORS = (SQLAlchemyError, OSError)

_PUBLISHED_DATE_RE = re.compile(r'"publishedDate"\s*:\s*"([^"]*)"')


@dataclass
class UpsertReport:
    """Outcome of a batch upsert."""

    upserted: list[str] = field(default_factory=list)
    skipped: int = 0
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class StoreResult:
    """One page of store matches."""

    items: list[dict[str, Any]]
    total_items: int
    newest_fetched_at: datetime | None = None

    @property
    def empty(self) -> bool:
        return not self.items


def row_to_volume(row: CachedBook) -> dict[str, Any]:
    """Rebuild the volume document served for a stored row.

    The stored raw document is returned verbatim when it parses. Otherwise a
    minimal document is built from the columns, with a best-effort
    ``publishedDate`` scraped from whatever raw text survives.
    """
    raw = row.raw_json
    if raw:
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

    published = ""
    if raw:
        match = _PUBLISHED_DATE_RE.search(raw)
        if match:
            published = match.group(1)

    return {
        "id": row.external_id,
        "volumeInfo": {
            "title": row.title,
            "authors": _load_authors(row.authors_json),
            "imageLinks": {"thumbnail": row.cover_url},
            "infoLink": row.info_url,
            "publishedDate": published,
        },
    }


def _load_authors(authors_json: str | None) -> list[str]:
    try:
        authors = json.loads(authors_json or "[]")
    except ValueError:
        return []
    return authors if isinstance(authors, list) else []


class ItemStore:
    """Durable store of fetched volumes keyed by external ID.

    Usage:
        ```python
        store = ItemStore(get_session_factory())
        report = await store.upsert_many(CachedItem.from_volume(v) for v in volumes)
        page = await store.search("dune", limit=20, offset=0)
        ```
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory for scoped sessions
        """
        self._session_factory = session_factory

    async def upsert_many(self, items: Iterable[CachedItem]) -> UpsertReport:
        """Upsert each item that has an external ID.

        Items without an ID are skipped. A failing item is rolled back,
        logged and listed in ``report.failed``; the rest are still written.

        Args:
            items: Items to persist

        Returns:
            UpsertReport listing written, skipped and failed items
        """
        report = UpsertReport()

        async with self._session_factory() as session:
            repo = CachedBookRepository(session)
            for item in items:
                if not item.external_id:
                    report.skipped += 1
                    continue
                try:
                    await repo.upsert(item)
                    await session.commit()
                except STORE_ERRORS as e:
                    await session.rollback()
                    logger.warning(
                        "item_upsert_failed",
                        external_id=item.external_id,
                        error=str(e),
                    )
                    report.failed.append(item.external_id)
                else:
                    report.upserted.append(item.external_id)

        logger.debug(
            "items_upserted",
            upserted=len(report.upserted),
            skipped=report.skipped,
            failed=len(report.failed),
        )
        return report

    async def search(
        self,
        query: str,
        *,
        limit: int,
        offset: int = 0,
    ) -> StoreResult:
        """Substring search over title and authors, newest fetch first.

        Args:
            query: Text to match case-insensitively; empty matches all rows
            limit: Page size
            offset: Rows to skip

        Returns:
            StoreResult with rebuilt volume documents and the total count

        Raises:
            PersistenceError: If the database cannot be read
        """
        try:
            async with self._session_factory() as session:
                rows, total = await CachedBookRepository(session).search(
                    query, offset=offset, limit=limit
                )
        except STORE_ERRORS as e:
            raise PersistenceError(
                message="Failed to search cached books", error=str(e)
            ) from e

        newest = max((as_utc(row.fetched_at) for row in rows), default=None)
        return StoreResult(
            items=[row_to_volume(row) for row in rows],
            total_items=total,
            newest_fetched_at=newest,
        )
