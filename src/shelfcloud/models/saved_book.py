"""SavedBook model - books a signed-in user kept in their shelf."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shelfcloud.models.base import Base, UUIDPrimaryKeyMixin, utcnow


class SavedBook(UUIDPrimaryKeyMixin, Base):
    """A book saved by a user.

    Users are owned by the external identity provider, so ``user_id`` is a
    plain indexed string rather than a foreign key.
    """

    __tablename__ = "saved_books"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    authors_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    cover_url: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    info_url: Mapped[str] = mapped_column(String(2000), nullable=False, default="")
    published_date: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    access_info_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    saved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (Index("ix_saved_books_user_id_saved_at", "user_id", "saved_at"),)

    def __repr__(self) -> str:
        return f"<SavedBook(user_id='{self.user_id}', title='{self.title}')>"
