"""CachedBookRepository for the persistent search cache.

Provides the keyed upsert and the substring search that back the
database tier of search.
"""

from sqlalchemy import ColumnElement, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from shelfcloud.models.cached_book import CachedBook
from shelfcloud.repositories.base import BaseRepository
from shelfcloud.services.google_books import CachedItem

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def contains_pattern(query: str) -> str:
    """Build a LIKE pattern matching ``query`` anywhere, wildcards escaped."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CachedBookRepository(BaseRepository[CachedBook]):
    """Repository for CachedBook entities."""

    async def get_by_external_id(self, external_id: str) -> CachedBook | None:
        """Find a cached book by its Google Books ID.

        Args:
            external_id: Volume ID

        Returns:
            CachedBook if found, None otherwise
        """
        result = await self.session.execute(
            select(CachedBook).where(CachedBook.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, item: CachedItem) -> None:
        """Insert the item or update the row with the same external ID.

        Every column, ``fetched_at`` included, takes the item's values.

        Args:
            item: Item with a non-empty external_id

        Raises:
            ValueError: If the item has no external ID
        """
        if not item.external_id:
            raise ValueError("Cannot upsert an item without an external ID")

        values = {
            "external_id": item.external_id,
            "title": item.title,
            "authors_json": item.authors_json,
            "info_url": item.info_url,
            "cover_url": item.cover_url,
            "raw_json": item.raw_json,
            "fetched_at": item.fetched_at,
        }

        insert = _UPSERT_DIALECTS.get(self.session.bind.dialect.name)
        if insert is None:
            await self._upsert_fallback(values)
            return

        stmt = insert(CachedBook).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[CachedBook.external_id],
            set_={
                "title": stmt.excluded.title,
                "authors_json": stmt.excluded.authors_json,
                "info_url": stmt.excluded.info_url,
                "cover_url": stmt.excluded.cover_url,
                "raw_json": stmt.excluded.raw_json,
                "fetched_at": stmt.excluded.fetched_at,
                "updated_at": func.now(),
            },
        )
        await self.session.execute(stmt)

    async def _upsert_fallback(self, values: dict[str, object]) -> None:
        """Select-then-write for dialects without ON CONFLICT."""
        existing = await self.get_by_external_id(str(values["external_id"]))
        if existing is None:
            self.session.add(CachedBook(**values))
        else:
            for key, value in values.items():
                setattr(existing, key, value)
        await self.session.flush()

    async def search(
        self,
        query: str,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[CachedBook], int]:
        """Case-insensitive substring search on title or authors.

        Args:
            query: Text to look for; empty matches every row
            offset: Pagination offset
            limit: Maximum rows

        Returns:
            Tuple of (rows newest-fetched first, total matches ignoring paging)
        """
        condition = self._matches(query)

        result = await self.session.execute(
            select(CachedBook)
            .where(condition)
            .order_by(CachedBook.fetched_at.desc(), CachedBook.external_id)
            .offset(offset)
            .limit(limit)
        )
        rows = list(result.scalars().all())

        total = await self.session.execute(
            select(func.count()).select_from(CachedBook).where(condition)
        )
        return rows, total.scalar_one()

    @staticmethod
    def _matches(query: str) -> ColumnElement[bool]:
        pattern = contains_pattern(query)
        return or_(
            CachedBook.title.ilike(pattern, escape="\\"),
            CachedBook.authors_json.ilike(pattern, escape="\\"),
        )
