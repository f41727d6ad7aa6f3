"""CachedBook model - persistent tier of the search cache.

Every volume fetched from Google Books (directly, by a background refresh,
or reported back by a client through bulk ingest) is upserted here, keyed
on its external ID. Search falls back to a substring scan of this table.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shelfcloud.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class CachedBook(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A previously fetched book record.

    Attributes:
        external_id: Google Books volume ID (unique upsert key)
        title: Volume title, may be empty
        authors_json: Authors serialized as a JSON array (searched as text)
        info_url: Google Books info link
        cover_url: Thumbnail URL
        raw_json: Complete upstream document, serialized
        fetched_at: Time of the most recent write
    """

    __tablename__ = "books"

    external_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    authors_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    info_url: Mapped[str] = mapped_column(String(2000), nullable=False, default="")
    cover_url: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    raw_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<CachedBook(external_id='{self.external_id}', title='{self.title}', "
            f"fetched_at={self.fetched_at})>"
        )
