"""SavedBookRepository for per-user saved books."""

from sqlalchemy import select

from shelfcloud.models.saved_book import SavedBook
from shelfcloud.repositories.base import BaseRepository


class SavedBookRepository(BaseRepository[SavedBook]):
    """Repository for SavedBook entities."""

    async def list_for_user(
        self,
        user_id: str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> list[SavedBook]:
        """Get a user's saved books, most recently saved first.

        Args:
            user_id: Identity provider user ID
            offset: Pagination offset
            limit: Maximum results

        Returns:
            List of saved books
        """
        result = await self.session.execute(
            select(SavedBook)
            .where(SavedBook.user_id == user_id)
            .order_by(SavedBook.saved_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())
