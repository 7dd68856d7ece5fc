"""Daily streak tracking: per-solve updates, nightly processing and warnings.

Days are local calendar days (``Settings.timezone_offset_minutes``).
Nightly processing is idempotent per user through ``last_streak_processed``:
each user's outcome is decided first and the marker is stamped afterwards, in
the same transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coarc.config import Settings
from coarc.db.models import Profile
from coarc.gamification.badge_service import check_and_award
from coarc.gamification.day_utils import local_today, utc_now
from coarc.gamification.xp_service import award_xp, get_profile

if TYPE_CHECKING:
    from coarc.notifications.service import Notifier

logger = logging.getLogger(__name__)

# Outcomes of the nightly decision for one user
NO_HISTORY = "no_history"
CONTINUED = "continued"
SHIELDED = "shielded"
RESET = "reset"
UNCHANGED = "unchanged"


def streak_xp(current_streak: int, base: int, cap: int) -> int:
    """Daily streak bonus: base XP per streak day, counted up to day 10, capped."""
    return min(base * min(current_streak, 10), cap)


def _last_covered_day(profile: Profile) -> date | None:
    """Latest day that counts as active: a solve, or a gap bridged by a shield."""
    days = [d for d in (profile.last_solve_date, profile.shield_protected_through) if d is not None]
    return max(days) if days else None


async def update_streak(
    db: AsyncSession,
    user_id: int,
    settings: Settings,
    now: datetime | None = None,
) -> Profile | None:
    """Record that ``user_id`` solved something today.

    No-op if they already solved today. Continues the streak when the last
    active day (solve or shield-bridged gap) was yesterday, otherwise starts
    a fresh streak of 1.
    """
    profile = await get_profile(db, user_id)
    if profile is None:
        logger.warning("update_streak: no profile for user %s", user_id)
        return None

    today = local_today(settings.timezone_offset_minutes, now)
    if profile.last_solve_date == today:
        return profile

    yesterday = today - timedelta(days=1)
    last_covered = _last_covered_day(profile)
    if last_covered is not None and last_covered >= yesterday:
        profile.current_streak += 1
    else:
        profile.current_streak = 1

    profile.longest_streak = max(profile.longest_streak, profile.current_streak)
    profile.last_solve_date = today
    profile.updated_at = now or utc_now()
    await db.flush()
    return profile


async def _decide(
    notifier: Notifier | None,
    db: AsyncSession,
    profile: Profile,
    today: date,
    settings: Settings,
) -> str:
    """Apply the nightly streak transition for one profile (without stamping)."""
    yesterday = today - timedelta(days=1)

    if profile.last_solve_date is None:
        return NO_HISTORY

    if profile.last_solve_date == yesterday:
        amount = streak_xp(profile.current_streak, settings.xp_streak_base, settings.xp_streak_cap)
        if amount > 0:
            await award_xp(
                db, notifier, profile.id, amount,
                f"Streak bonus (day {profile.current_streak})",
                f"streak_{yesterday.isoformat()}",
            )
        every = settings.streak_shield_every_days
        if profile.current_streak > 0 and profile.current_streak % every == 0:
            profile.streak_shields += 1
        return CONTINUED

    last_covered = _last_covered_day(profile)
    if last_covered is not None and last_covered >= yesterday:
        # Solved today already, or yesterday was bridged earlier
        return UNCHANGED

    if profile.streak_shields > 0:
        profile.streak_shields -= 1
        profile.shield_protected_through = yesterday
        if notifier is not None:
            await notifier.notify(
                profile.id,
                "streak_saved",
                "Streak Shield Used!",
                f"Your {profile.current_streak}-day streak was saved by a shield! "
                f"{profile.streak_shields} shields remaining.",
                {"url": "/dashboard", "shields_left": profile.streak_shields},
            )
        return SHIELDED

    if profile.current_streak <= 0:
        return UNCHANGED

    lost = profile.current_streak
    profile.current_streak = 0
    profile.last_lost_streak = lost
    if notifier is not None:
        await notifier.notify(
            profile.id,
            "streak_lost",
            "Streak Lost",
            f"Your {lost}-day streak has ended. Start fresh today!",
            {"url": "/dashboard", "lost_streak": lost},
        )
    return RESET


async def process_all_streaks(
    db: AsyncSession,
    notifier: Notifier | None,
    settings: Settings,
    now: datetime | None = None,
) -> dict[str, int]:
    """Nightly pass over every profile not yet processed for today.

    Per user: decide (reward, shield or reset), stamp ``last_streak_processed``,
    re-run badge evaluation and commit. A failing user is rolled back and
    left unstamped so the next run retries it.
    """
    now = now or utc_now()
    today = local_today(settings.timezone_offset_minutes, now)

    result = await db.execute(
        select(Profile.id)
        .where(or_(Profile.last_streak_processed.is_(None), Profile.last_streak_processed != today))
        .order_by(Profile.id)
    )
    user_ids = list(result.scalars().all())

    counts = {"processed": 0, CONTINUED: 0, SHIELDED: 0, RESET: 0, "failed": 0}
    for user_id in user_ids:
        try:
            profile = await get_profile(db, user_id)
            if profile is None or profile.last_streak_processed == today:
                continue
            outcome = await _decide(notifier, db, profile, today, settings)
            profile.last_streak_processed = today
            profile.updated_at = now
            await db.flush()
            if outcome != NO_HISTORY:
                await check_and_award(db, notifier, user_id, settings)
            await db.commit()
        except Exception:
            logger.exception("Streak processing failed for user %s", user_id)
            await db.rollback()
            counts["failed"] += 1
            continue

        counts["processed"] += 1
        if outcome in counts:
            counts[outcome] += 1

    logger.info("Streak processing complete for %s: %s", today, counts)
    return counts


async def send_streak_warnings(
    db: AsyncSession,
    notifier: Notifier,
    settings: Settings,
    now: datetime | None = None,
) -> int:
    """Warn users with a live streak who have not solved today. Returns warnings sent."""
    today = local_today(settings.timezone_offset_minutes, now)

    result = await db.execute(
        select(Profile)
        .where(
            Profile.current_streak >= settings.streak_warning_min_streak,
            or_(Profile.last_solve_date.is_(None), Profile.last_solve_date != today),
        )
        .order_by(Profile.id)
    )
    at_risk = result.scalars().all()

    sent = 0
    for profile in at_risk:
        notification = await notifier.notify(
            profile.id,
            "streak_warning",
            "Streak at Risk!",
            f"Your {profile.current_streak}-day streak expires at midnight! Solve a problem now.",
            {"url": "/problems/daily", "current_streak": profile.current_streak},
        )
        if notification is not None:
            sent += 1

    await db.commit()
    logger.info("Sent %d streak warnings", sent)
    return sent
