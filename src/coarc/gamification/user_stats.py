"""Aggregate statistics snapshot used by badge evaluation."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coarc.db.models import (
    BossBattleSolve,
    CfSubmission,
    DailyProblemSolve,
    Duel,
    LcStats,
    Profile,
    Quest,
    Resource,
    SharedProblem,
    UserQuest,
)
from coarc.gamification.day_utils import local_hour

ACCEPTED = "OK"


@dataclass
class UserStats:
    total_solves: int = 0
    cf_solves: int = 0
    lc_solves: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    problems_shared: int = 0
    duels_won: int = 0
    bosses_defeated: int = 0
    boss_first_solves: int = 0
    resources_approved: int = 0
    all_quests_weeks: int = 0
    unique_topics: int = 0
    daily_solves: int = 0
    # Accepted solves per local hour of day, index 0-23
    solve_hours: list[int] = field(default_factory=lambda: [0] * 24)
    rank_climb: int = 0
    last_lost_streak: int = 0


async def _count(db: AsyncSession, model: type, *criteria: object) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*criteria))
    return int(result.scalar_one())


async def count_all_quest_weeks(db: AsyncSession, user_id: int) -> int:
    """Weeks in which the user completed every quest assigned that week."""
    completed = await db.execute(
        select(Quest.week_start, func.count())
        .join(UserQuest, UserQuest.quest_id == Quest.id)
        .where(UserQuest.user_id == user_id, UserQuest.completed.is_(True))
        .group_by(Quest.week_start)
    )
    completed_by_week = {week: n for week, n in completed.all()}
    if not completed_by_week:
        return 0

    totals = await db.execute(
        select(Quest.week_start, func.count())
        .where(Quest.week_start.in_(list(completed_by_week)))
        .group_by(Quest.week_start)
    )
    return sum(
        1 for week, total in totals.all()
        if total > 0 and completed_by_week.get(week, 0) >= total
    )


async def compute_user_stats(db: AsyncSession, user_id: int, offset_minutes: int) -> UserStats | None:
    """Build the snapshot for one user. Returns None if the profile is missing."""
    profile = (await db.execute(select(Profile).where(Profile.id == user_id))).scalar_one_or_none()
    if profile is None:
        return None

    stats = UserStats(
        current_streak=profile.current_streak,
        longest_streak=profile.longest_streak,
        rank_climb=profile.rank_climb,
        last_lost_streak=profile.last_lost_streak,
    )

    subs = await db.execute(
        select(CfSubmission.tags, CfSubmission.submitted_at).where(
            CfSubmission.user_id == user_id,
            CfSubmission.verdict == ACCEPTED,
        )
    )
    topics: set[str] = set()
    for tags, submitted_at in subs.all():
        stats.cf_solves += 1
        topics.update(tags or [])
        if submitted_at is not None:
            stats.solve_hours[local_hour(submitted_at, offset_minutes)] += 1
    stats.unique_topics = len(topics)

    lc_total = (
        await db.execute(select(LcStats.total_solved).where(LcStats.user_id == user_id))
    ).scalar_one_or_none()
    stats.lc_solves = lc_total or 0
    stats.total_solves = stats.cf_solves + stats.lc_solves

    stats.problems_shared = await _count(
        db, SharedProblem, SharedProblem.user_id == user_id, SharedProblem.source == "manual"
    )
    stats.duels_won = await _count(db, Duel, Duel.winner_id == user_id)
    stats.bosses_defeated = await _count(db, BossBattleSolve, BossBattleSolve.user_id == user_id)
    stats.boss_first_solves = await _count(
        db, BossBattleSolve, BossBattleSolve.user_id == user_id, BossBattleSolve.solve_rank == 1
    )
    stats.resources_approved = await _count(
        db, Resource, Resource.submitted_by == user_id, Resource.status == "approved"
    )
    stats.all_quests_weeks = await count_all_quest_weeks(db, user_id)
    stats.daily_solves = await _count(db, DailyProblemSolve, DailyProblemSolve.user_id == user_id)

    return stats
