"""Platform solve sync: mirror Codeforces submissions and LeetCode totals.

Codeforces fetches run concurrently in small batches with a pause between
batches; LeetCode is polled one user at a time. Database writes are applied
afterwards, one user at a time, on the job's single session (an AsyncSession
must not be shared across tasks).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coarc.config import Settings
from coarc.db.base import upsert_insert
from coarc.db.models import CfSubmission, LcStats, Profile
from coarc.gamification.badge_service import check_and_award
from coarc.gamification.day_utils import local_date, local_today, utc_now
from coarc.gamification.streak_service import update_streak
from coarc.gamification.xp_service import award_xp
from coarc.jobs.batch import run_in_batches
from coarc.platforms.codeforces import CodeforcesSource, Submission, UserInfo
from coarc.platforms.leetcode import LcStatsSource, LcUserStats

if TYPE_CHECKING:
    from coarc.notifications.service import Notifier

logger = logging.getLogger(__name__)


async def record_submissions(
    db: AsyncSession,
    notifier: Notifier | None,
    user_id: int,
    submissions: list[Submission],
    settings: Settings,
    now: datetime | None = None,
    paid_since: datetime | None = None,
) -> int:
    """Store new accepted submissions for one user. Returns how many were new.

    First accepted submission of a problem pays solve XP (keyed on the
    problem), unless it was made before ``paid_since``: history from before
    the account existed is mirrored but not paid. A new solve dated local
    today advances the streak; any new solve re-runs badge evaluation.
    """
    accepted = [s for s in submissions if s.accepted]
    if not accepted:
        return 0

    known = await db.execute(
        select(CfSubmission.cf_submission_id).where(
            CfSubmission.cf_submission_id.in_([s.submission_id for s in accepted])
        )
    )
    known_ids = set(known.scalars().all())

    solved = await db.execute(
        select(CfSubmission.problem_id).where(
            CfSubmission.user_id == user_id,
            CfSubmission.verdict == "OK",
        )
    )
    solved_problems = set(solved.scalars().all())

    today = local_today(settings.timezone_offset_minutes, now)
    new_count = 0
    solved_today = False
    # Oldest first so the earliest accepted submission of a problem is the one that pays
    for sub in sorted(accepted, key=lambda s: s.submitted_at):
        if sub.submission_id in known_ids:
            continue
        try:
            async with db.begin_nested():
                db.add(CfSubmission(
                    user_id=user_id,
                    cf_submission_id=sub.submission_id,
                    problem_id=sub.problem_id,
                    problem_name=sub.problem_name,
                    problem_rating=sub.problem_rating,
                    tags=list(sub.tags),
                    verdict=sub.verdict,
                    language=sub.language,
                    submitted_at=sub.submitted_at,
                ))
                await db.flush()
        except IntegrityError:
            logger.debug("Submission %s already recorded", sub.submission_id)
            continue

        new_count += 1
        if local_date(sub.submitted_at, settings.timezone_offset_minutes) == today:
            solved_today = True
        if sub.problem_id not in solved_problems:
            solved_problems.add(sub.problem_id)
            if paid_since is not None and sub.submitted_at < paid_since:
                continue
            await award_xp(
                db, notifier, user_id, settings.xp_solve_problem,
                f"Solved {sub.problem_id}", f"cf_{sub.problem_id}",
            )

    if solved_today:
        await update_streak(db, user_id, settings, now)
    if new_count:
        await check_and_award(db, notifier, user_id, settings)
    return new_count


async def apply_user_info(db: AsyncSession, user_id: int, info: UserInfo, now: datetime | None = None) -> None:
    """Copy the platform's rating fields onto the profile."""
    await db.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(
            cf_rating=info.rating,
            cf_max_rating=info.max_rating,
            cf_rank=info.rank,
            updated_at=now or utc_now(),
        )
    )


async def sync_codeforces(
    db: AsyncSession,
    notifier: Notifier | None,
    source: CodeforcesSource,
    settings: Settings,
    now: datetime | None = None,
) -> dict[str, object]:
    """Sync every profile that has a Codeforces handle."""
    now = now or utc_now()
    result = await db.execute(
        select(Profile.id, Profile.cf_handle, Profile.created_at)
        .where(Profile.cf_handle.is_not(None), Profile.cf_handle != "")
        .order_by(Profile.id)
    )
    users: list[tuple[int, str, datetime | None]] = [tuple(row) for row in result.all()]
    if not users:
        return {"synced": 0, "total": 0, "new_submissions": 0, "errors": []}

    async def fetch(user: tuple[int, str, datetime | None]) -> tuple[list[Submission], UserInfo]:
        submissions = await source.fetch_submissions(user[1], settings.sync_history_window)
        info = await source.fetch_user_info(user[1])
        return submissions, info

    fetched = await run_in_batches(users, fetch, settings.sync_batch_size, settings.sync_batch_delay_seconds)

    synced = 0
    new_total = 0
    errors: list[str] = []
    for unit in fetched:
        user_id, handle, created_at = unit.item
        if not unit.ok or unit.value is None:
            logger.warning("CF fetch failed for %s (user %s): %s", handle, user_id, unit.error)
            errors.append(f"{handle}: {unit.error}")
            continue
        submissions, info = unit.value
        try:
            await apply_user_info(db, user_id, info, now)
            new_total += await record_submissions(
                db, notifier, user_id, submissions, settings, now, paid_since=created_at
            )
            await db.commit()
            synced += 1
        except Exception as exc:
            logger.exception("CF sync failed for user %s", user_id)
            await db.rollback()
            errors.append(f"{handle}: {exc}")

    summary = {"synced": synced, "total": len(users), "new_submissions": new_total, "errors": errors[:10]}
    logger.info("CF sync complete: %d/%d users, %d new submissions", synced, len(users), new_total)
    return summary


def solved_on(stats: LcUserStats, day: date, offset_minutes: int) -> bool:
    """Whether the submission calendar shows activity on local ``day``."""
    for ts, count in stats.calendar.items():
        if count > 0 and local_date(datetime.fromtimestamp(ts, tz=timezone.utc), offset_minutes) == day:
            return True
    return False


async def record_lc_stats(
    db: AsyncSession,
    notifier: Notifier | None,
    user_id: int,
    stats: LcUserStats,
    settings: Settings,
    now: datetime | None = None,
) -> None:
    """Upsert one user's LeetCode totals, then advance the streak and re-run badges."""
    now = now or utc_now()
    values = {
        "easy_solved": stats.easy_solved,
        "medium_solved": stats.medium_solved,
        "hard_solved": stats.hard_solved,
        "total_solved": stats.total_solved,
        "contest_rating": stats.contest_rating,
        "synced_at": now,
    }
    stmt = upsert_insert(db, LcStats).values(user_id=user_id, **values)
    stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=values)
    await db.execute(stmt)

    if solved_on(stats, local_today(settings.timezone_offset_minutes, now), settings.timezone_offset_minutes):
        await update_streak(db, user_id, settings, now)
    await check_and_award(db, notifier, user_id, settings)


async def sync_leetcode(
    db: AsyncSession,
    notifier: Notifier | None,
    source: LcStatsSource,
    settings: Settings,
    now: datetime | None = None,
) -> dict[str, object]:
    """Sync LeetCode totals for every profile that has a LeetCode handle."""
    now = now or utc_now()
    result = await db.execute(
        select(Profile.id, Profile.lc_handle)
        .where(Profile.lc_handle.is_not(None), Profile.lc_handle != "")
        .order_by(Profile.id)
    )
    users: list[tuple[int, str]] = [(uid, handle) for uid, handle in result.all()]
    if not users:
        return {"synced": 0, "total": 0, "errors": []}

    async def fetch(user: tuple[int, str]) -> LcUserStats:
        return await source.fetch_stats(user[1])

    # One user at a time; the GraphQL endpoint rate-limits aggressively
    fetched = await run_in_batches(users, fetch, 1, settings.lc_sync_delay_seconds)

    synced = 0
    errors: list[str] = []
    for unit in fetched:
        user_id, handle = unit.item
        if not unit.ok or unit.value is None:
            logger.warning("LC fetch failed for %s (user %s): %s", handle, user_id, unit.error)
            errors.append(f"{handle}: {unit.error}")
            continue
        try:
            await record_lc_stats(db, notifier, user_id, unit.value, settings, now)
            await db.commit()
            synced += 1
        except Exception as exc:
            logger.exception("LC sync failed for user %s", user_id)
            await db.rollback()
            errors.append(f"{handle}: {exc}")

    logger.info("LC sync complete: %d/%d users", synced, len(users))
    return {"synced": synced, "total": len(users), "errors": errors[:10]}
