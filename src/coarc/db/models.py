"""ORM models for the gamification core and the statistics it reads.

Uniqueness constraints here are load-bearing: retried or concurrent jobs rely
on them (not on locks) to make XP payouts and badge grants happen once.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from coarc.db.base import Base, BigIntPK, JSONType, UTCDateTime


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """One row per user, created at account setup and never deleted."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cf_handle: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lc_handle: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Written by the Codeforces sync from user.info
    cf_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cf_max_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cf_rank: Mapped[str | None] = mapped_column(String(32), nullable=True)

    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    streak_shields: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_solve_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_streak_processed: Mapped[date | None] = mapped_column(Date, nullable=True)
    shield_protected_through: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Written by the streak and rankings jobs, read by badge evaluation
    last_lost_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    rank_climb: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# XP ledger
# ---------------------------------------------------------------------------


class XPLogEntry(Base):
    """Immutable XP transaction. UNIQUE(user_id, reference_id) makes payouts idempotent."""

    __tablename__ = "xp_log"
    __table_args__ = (
        UniqueConstraint("user_id", "reference_id", name="xp_log_user_id_reference_id_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(256), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class Badge(Base):
    """Badge catalog entry. ``condition_value`` is a tagged descriptor ({"type": ..., params})."""

    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    condition_type: Mapped[str] = mapped_column(String(16), nullable=False, default="auto")
    condition_value: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class UserBadge(Base):
    """Badges earned by users. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="user_badges_user_id_badge_id_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badges.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Duels
# ---------------------------------------------------------------------------


class Duel(Base):
    """1v1 challenge. Status moves once into completed/expired/declined and stays there."""

    __tablename__ = "duels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenger_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    challenged_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    problem_id: Mapped[str] = mapped_column(String(32), nullable=False)
    time_limit_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60, server_default="60")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    winner_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    challenger_solve_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    challenged_solve_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted in-app notification."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    push_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Scheduler / jobs
# ---------------------------------------------------------------------------


class CronRun(Base):
    """Last successful run per named job."""

    __tablename__ = "cron_runs"

    job_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_run_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class RankingSnapshot(Base):
    """Weekly XP ranking captured by the rankings job, diffed on the next run."""

    __tablename__ = "ranking_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    ranking: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class WeeklyDigest(Base):
    """Class-wide weekly summary, one row per week."""

    __tablename__ = "weekly_digests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_start: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Statistic sources (written by the host application and the sync job)
# ---------------------------------------------------------------------------


class CfSubmission(Base):
    """Accepted Codeforces submission mirrored from the platform."""

    __tablename__ = "cf_submissions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    cf_submission_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    problem_id: Mapped[str] = mapped_column(String(32), nullable=False)
    problem_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    problem_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    verdict: Mapped[str] = mapped_column(String(32), nullable=False)
    language: Mapped[str | None] = mapped_column(String(64), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class LcStats(Base):
    """LeetCode solve totals, one row per user."""

    __tablename__ = "lc_stats"

    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    total_solved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    easy_solved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    medium_solved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    hard_solved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    contest_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class SharedProblem(Base):
    __tablename__ = "shared_problems"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    problem_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class BossBattleSolve(Base):
    __tablename__ = "boss_battle_solves"
    __table_args__ = (
        UniqueConstraint("boss_id", "user_id", name="boss_battle_solves_boss_id_user_id_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    boss_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    solve_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    solved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class Resource(Base):
    __tablename__ = "resources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submitted_by: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class Quest(Base):
    """Weekly quest; all quests sharing a ``week_start`` form that week's set."""

    __tablename__ = "quests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class UserQuest(Base):
    __tablename__ = "user_quests"
    __table_args__ = (
        UniqueConstraint("user_id", "quest_id", name="user_quests_user_id_quest_id_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    quest_id: Mapped[int] = mapped_column(Integer, ForeignKey("quests.id", ondelete="CASCADE"), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class DailyProblemSolve(Base):
    __tablename__ = "daily_problem_solves"
    __table_args__ = (
        UniqueConstraint("user_id", "problem_date", name="daily_problem_solves_user_id_problem_date_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    problem_date: Mapped[date] = mapped_column(Date, nullable=False)
    solved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
