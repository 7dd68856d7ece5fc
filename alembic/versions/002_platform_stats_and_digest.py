"""Platform stats and weekly digest: Codeforces rating on profiles, LeetCode contest rating, weekly_digests.

Revision ID: 002_platform_stats_and_digest
Revises: 001_gamification_core
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "002_platform_stats_and_digest"
down_revision: str | None = "001_gamification_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add rating columns and the weekly_digests table."""
    op.add_column("profiles", sa.Column("cf_rating", sa.Integer(), nullable=True))
    op.add_column("profiles", sa.Column("cf_max_rating", sa.Integer(), nullable=True))
    op.add_column("profiles", sa.Column("cf_rank", sa.String(32), nullable=True))
    op.add_column("lc_stats", sa.Column("contest_rating", sa.Integer(), nullable=True))

    op.create_table(
        "weekly_digests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("content", JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("week_start", name="weekly_digests_week_start_key"),
    )


def downgrade() -> None:
    """Drop the weekly_digests table and rating columns."""
    op.drop_table("weekly_digests")
    op.drop_column("lc_stats", "contest_rating")
    op.drop_column("profiles", "cf_rank")
    op.drop_column("profiles", "cf_max_rating")
    op.drop_column("profiles", "cf_rating")
