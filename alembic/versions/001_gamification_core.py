"""Gamification core: profiles, XP ledger, badges, duels, notifications, job markers.

Also creates the statistic source tables read by badge evaluation
(cf_submissions, lc_stats, shared_problems, boss_battle_solves, resources,
quests, user_quests, daily_problem_solves).

Revision ID: 001_gamification_core
Revises:
Create Date: 2026-10-12
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

revision: str = "001_gamification_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _user_fk(column: str = "user_id", **kwargs: object) -> sa.Column:
    return sa.Column(column, sa.BigInteger(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, **kwargs)


def upgrade() -> None:
    """Create gamification tables."""
    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("display_name", sa.String(64), nullable=True),
        sa.Column("cf_handle", sa.String(64), nullable=True),
        sa.Column("lc_handle", sa.String(64), nullable=True),
        sa.Column("xp", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("streak_shields", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_solve_date", sa.Date(), nullable=True),
        sa.Column("last_streak_processed", sa.Date(), nullable=True),
        sa.Column("shield_protected_through", sa.Date(), nullable=True),
        sa.Column("last_lost_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rank_climb", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("NOW()")),
        sa.CheckConstraint("xp >= 0", name="ck_profiles_xp_non_negative"),
        sa.CheckConstraint("streak_shields >= 0", name="ck_profiles_shields_non_negative"),
        sa.CheckConstraint("longest_streak >= current_streak", name="ck_profiles_longest_ge_current"),
    )
    op.create_index("ix_profiles_cf_handle", "profiles", ["cf_handle"])
    op.create_index("ix_profiles_last_streak_processed", "profiles", ["last_streak_processed"])

    # --- xp_log ---
    op.create_table(
        "xp_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(256), nullable=False),
        sa.Column("reference_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("user_id", "reference_id", name="xp_log_user_id_reference_id_key"),
    )
    op.create_index("ix_xp_log_created_at", "xp_log", ["created_at"])

    # --- badges ---
    op.create_table(
        "badges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("condition_type", sa.String(16), nullable=False, server_default="auto"),
        sa.Column("condition_value", JSONB(), nullable=True),
        sa.Column("icon", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("NOW()")),
        sa.CheckConstraint("condition_type IN ('auto', 'manual')", name="ck_badges_condition_type"),
    )

    # --- user_badges ---
    op.create_table(
        "user_badges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("badge_id", sa.Integer(), sa.ForeignKey("badges.id"), nullable=False),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("user_id", "badge_id", name="user_badges_user_id_badge_id_key"),
    )

    # --- duels ---
    op.create_table(
        "duels",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk("challenger_id"),
        _user_fk("challenged_id"),
        sa.Column("problem_id", sa.String(32), nullable=False),
        sa.Column("time_limit_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("winner_id", sa.BigInteger(), nullable=True),
        sa.Column("challenger_solve_time", sa.Integer(), nullable=True),
        sa.Column("challenged_solve_time", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'expired', 'declined')",
            name="ck_duels_status",
        ),
        sa.CheckConstraint("challenger_id <> challenged_id", name="ck_duels_distinct_users"),
    )
    op.create_index("ix_duels_status", "duels", ["status"])
    op.create_index("ix_duels_winner_id", "duels", ["winner_id"])

    # --- notifications ---
    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("data", JSONB(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("push_sent", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("NOW()")),
    )
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", sa.text("created_at DESC")])

    # --- cron_runs ---
    op.create_table(
        "cron_runs",
        sa.Column("job_name", sa.String(64), primary_key=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("result", JSONB(), nullable=True),
    )

    # --- ranking_snapshots ---
    op.create_table(
        "ranking_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("ranking", JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )

    # --- statistic sources ---
    op.create_table(
        "cf_submissions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("cf_submission_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("problem_id", sa.String(32), nullable=False),
        sa.Column("problem_name", sa.String(256), nullable=True),
        sa.Column("problem_rating", sa.Integer(), nullable=True),
        sa.Column("tags", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("verdict", sa.String(32), nullable=False),
        sa.Column("language", sa.String(64), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_cf_submissions_user_verdict", "cf_submissions", ["user_id", "verdict"])

    op.create_table(
        "lc_stats",
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("total_solved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("easy_solved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("medium_solved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("hard_solved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "shared_problems",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("problem_id", sa.String(64), nullable=False),
        sa.Column("source", sa.String(16), nullable=False, server_default="manual"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("NOW()")),
    )

    op.create_table(
        "boss_battle_solves",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("boss_id", sa.Integer(), nullable=False),
        _user_fk(),
        sa.Column("solve_rank", sa.Integer(), nullable=False),
        sa.Column("solved_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("boss_id", "user_id", name="boss_battle_solves_boss_id_user_id_key"),
    )

    op.create_table(
        "resources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk("submitted_by"),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("NOW()")),
    )

    op.create_table(
        "quests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("NOW()")),
    )
    op.create_index("ix_quests_week_start", "quests", ["week_start"])

    op.create_table(
        "user_quests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("quest_id", sa.Integer(), sa.ForeignKey("quests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "quest_id", name="user_quests_user_id_quest_id_key"),
    )

    op.create_table(
        "daily_problem_solves",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("problem_date", sa.Date(), nullable=False),
        sa.Column("solved_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "problem_date", name="daily_problem_solves_user_id_problem_date_key"),
    )


def downgrade() -> None:
    """Drop gamification tables."""
    for table in (
        "daily_problem_solves",
        "user_quests",
        "quests",
        "resources",
        "boss_battle_solves",
        "shared_problems",
        "lc_stats",
        "cf_submissions",
        "ranking_snapshots",
        "cron_runs",
        "notifications",
        "duels",
        "user_badges",
        "badges",
        "xp_log",
        "profiles",
    ):
        op.drop_table(table)
