"""Create books and saved_books tables.

Revision ID: 001_create_books_tables
Revises:
Create Date: 2026-10-19

``books`` is the persistent tier of the search cache, one row per Google
Books volume keyed on ``external_id``. ``saved_books`` holds each user's
shelf; users live in the identity provider, so there is no foreign key.
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_create_books_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the books and saved_books tables."""
    op.create_table(
        "books",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("authors_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("info_url", sa.String(length=2000), nullable=False, server_default=""),
        sa.Column("cover_url", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("raw_json", sa.Text(), nullable=True),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_books_external_id", "books", ["external_id"], unique=True)
    op.create_index("ix_books_fetched_at", "books", ["fetched_at"])

    op.create_table(
        "saved_books",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("title", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("authors_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("cover_url", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("info_url", sa.String(length=2000), nullable=False, server_default=""),
        sa.Column("published_date", sa.String(length=50), nullable=False, server_default=""),
        sa.Column("access_info_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("saved_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_saved_books_user_id_saved_at", "saved_books", ["user_id", "saved_at"]
    )


def downgrade() -> None:
    """Drop the books and saved_books tables."""
    op.drop_index("ix_saved_books_user_id_saved_at", table_name="saved_books")
    op.drop_table("saved_books")
    op.drop_index("ix_books_fetched_at", table_name="books")
    op.drop_index("ix_books_external_id", table_name="books")
    op.drop_table("books")
