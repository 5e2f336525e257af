"""Create book cache and rate-limit tables.

Revision ID: 001_book_cache_and_rate_limits
Revises:
Create Date: 2026-10-16

Creates:
- book_cache: enriched book metadata with source and expiry
- rate_limit_windows: per-API short-window request counters
- rate_limit_daily: per-API daily request counters
- rate_limit_alerts: once-per-day quota alert markers

The unique constraints are the conflict targets of the ``INSERT ... ON
CONFLICT`` statements that merge cache rows and increment counters.
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_book_cache_and_rate_limits"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
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
    ]


def upgrade() -> None:
    op.create_table(
        "book_cache",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("book_id", sa.String(255), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("author", sa.Text(), nullable=False),
        sa.Column("title_key", sa.Text(), nullable=False),
        sa.Column("author_key", sa.Text(), nullable=False),
        sa.Column("isbn", sa.String(30), nullable=True),
        sa.Column("cover_url", sa.Text(), nullable=True),
        sa.Column("rating", sa.String(10), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("book_metadata", sa.JSON(), nullable=True),
        sa.Column(
            "cached_at",
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
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "title_key", "author_key", name="uq_book_cache_title_author_key"
        ),
    )
    op.create_index("ix_book_cache_book_id", "book_cache", ["book_id"])
    op.create_index("ix_book_cache_isbn", "book_cache", ["isbn"])
    op.create_index("ix_book_cache_expires_at", "book_cache", ["expires_at"])
    op.create_index(
        "ix_book_cache_source_expires_at", "book_cache", ["source", "expires_at"]
    )

    op.create_table(
        "rate_limit_windows",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("api_name", sa.String(50), nullable=False),
        sa.Column("window_seconds", sa.Integer(), nullable=False),
        sa.Column("window_start", sa.BigInteger(), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "api_name",
            "window_seconds",
            "window_start",
            name="uq_rate_limit_windows_api_window",
        ),
    )
    op.create_index(
        "ix_rate_limit_windows_window_start", "rate_limit_windows", ["window_start"]
    )

    op.create_table(
        "rate_limit_daily",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("api_name", sa.String(50), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("daily_count", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("api_name", "usage_date", name="uq_rate_limit_daily_api_date"),
    )
    op.create_index("ix_rate_limit_daily_usage_date", "rate_limit_daily", ["usage_date"])

    op.create_table(
        "rate_limit_alerts",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("api_name", sa.String(50), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("level", sa.String(20), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "api_name",
            "usage_date",
            "level",
            name="uq_rate_limit_alerts_api_date_level",
        ),
    )
    op.create_index(
        "ix_rate_limit_alerts_usage_date", "rate_limit_alerts", ["usage_date"]
    )


def downgrade() -> None:
    op.drop_table("rate_limit_alerts")
    op.drop_table("rate_limit_daily")
    op.drop_table("rate_limit_windows")
    op.drop_table("book_cache")
