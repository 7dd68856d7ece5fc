"""1v1 duels: state machine, challenge operations and the resolver job.

State progression:
    pending -> active     (challenged user accepts)
    pending -> declined   (challenged user declines)
    pending -> expired    (not accepted within the pending TTL)
    active  -> completed  (both solved, or the time limit ran out)

completed, expired and declined are terminal. Transitions are validated
against VALID_TRANSITIONS; the resolver's status flip is a conditional
UPDATE so only one run can complete a given duel, and payouts are keyed
``duel_{id}`` per user so they happen at most once even if it could not.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coarc.config import Settings
from coarc.db.models import Duel, Profile
from coarc.gamification.day_utils import local_day_start_utc, local_today, utc_now
from coarc.gamification.xp_service import award_xp
from coarc.platforms.codeforces import PlatformError, Submission, SubmissionSource

if TYPE_CHECKING:
    from coarc.notifications.service import Notifier

logger = logging.getLogger(__name__)

PENDING = "pending"
ACTIVE = "active"
COMPLETED = "completed"
EXPIRED = "expired"
DECLINED = "declined"

VALID_TRANSITIONS: dict[str, list[str]] = {
    PENDING: [ACTIVE, DECLINED, EXPIRED],
    ACTIVE: [COMPLETED],
    COMPLETED: [],
    EXPIRED: [],
    DECLINED: [],
}


class DuelError(ValueError):
    """Caller-facing duel operation rejected."""


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises DuelError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise DuelError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


async def get_duel(db: AsyncSession, duel_id: int) -> Duel:
    duel = await db.get(Duel, duel_id)
    if duel is None:
        raise DuelError(f"Duel {duel_id} not found")
    return duel


# ---------------------------------------------------------------------------
# Caller-facing operations
# ---------------------------------------------------------------------------


async def create_challenge(
    db: AsyncSession,
    notifier: Notifier | None,
    challenger_id: int,
    challenged_id: int,
    problem_id: str,
    settings: Settings,
    time_limit_minutes: int | None = None,
    now: datetime | None = None,
) -> Duel:
    """Create a pending duel and notify the challenged user."""
    now = now or utc_now()
    if challenger_id == challenged_id:
        raise DuelError("You cannot challenge yourself")
    time_limit = time_limit_minutes or settings.duel_default_time_limit_minutes
    if time_limit <= 0:
        raise DuelError("Time limit must be positive")

    found = await db.execute(select(Profile).where(Profile.id.in_([challenger_id, challenged_id])))
    profiles = {p.id: p for p in found.scalars().all()}
    if challenged_id not in profiles or challenger_id not in profiles:
        raise DuelError("Unknown user")

    day_start = local_day_start_utc(local_today(settings.timezone_offset_minutes, now), settings.timezone_offset_minutes)
    sent_today = (
        await db.execute(
            select(func.count()).select_from(Duel).where(
                Duel.challenger_id == challenger_id,
                Duel.created_at >= day_start,
            )
        )
    ).scalar_one()
    if sent_today >= settings.duel_max_challenges_per_day:
        raise DuelError(f"Daily challenge limit reached ({settings.duel_max_challenges_per_day})")

    duel = Duel(
        challenger_id=challenger_id,
        challenged_id=challenged_id,
        problem_id=problem_id,
        time_limit_minutes=time_limit,
        status=PENDING,
        created_at=now,
    )
    db.add(duel)
    await db.flush()

    if notifier is not None:
        name = profiles[challenger_id].display_name or "Someone"
        await notifier.notify(
            challenged_id,
            "duel_challenge",
            "New Duel Challenge!",
            f"{name} challenged you to solve {problem_id} in {time_limit} minutes.",
            {"duel_id": duel.id, "url": "/duels"},
        )
    return duel


async def accept_duel(
    db: AsyncSession,
    notifier: Notifier | None,
    duel_id: int,
    user_id: int,
    settings: Settings,
    now: datetime | None = None,
) -> Duel:
    """Start the clock: pending -> active. Only the challenged user may accept."""
    now = now or utc_now()
    duel = await get_duel(db, duel_id)
    if duel.challenged_id != user_id:
        raise DuelError("Only the challenged user can accept this duel")
    validate_transition(duel.status, ACTIVE)
    if now - duel.created_at >= timedelta(hours=settings.duel_pending_ttl_hours):
        raise DuelError("This challenge has expired")

    duel.status = ACTIVE
    duel.started_at = now
    duel.expires_at = now + timedelta(minutes=duel.time_limit_minutes)
    await db.flush()

    if notifier is not None:
        await notifier.notify(
            duel.challenger_id,
            "duel_challenge",
            "Duel Accepted!",
            f"Your challenge on {duel.problem_id} was accepted. The clock is running!",
            {"duel_id": duel.id, "url": "/duels"},
        )
    return duel


async def decline_duel(
    db: AsyncSession,
    notifier: Notifier | None,
    duel_id: int,
    user_id: int,
    now: datetime | None = None,
) -> Duel:
    """pending -> declined. Only the challenged user may decline."""
    duel = await get_duel(db, duel_id)
    if duel.challenged_id != user_id:
        raise DuelError("Only the challenged user can decline this duel")
    validate_transition(duel.status, DECLINED)

    duel.status = DECLINED
    duel.completed_at = now or utc_now()
    await db.flush()

    if notifier is not None:
        await notifier.notify(
            duel.challenger_id,
            "duel_result",
            "Duel Declined",
            f"Your challenge on {duel.problem_id} was declined.",
            {"duel_id": duel.id, "url": "/duels"},
        )
    return duel


# ---------------------------------------------------------------------------
# Resolution (pure)
# ---------------------------------------------------------------------------


def find_solve_time(
    submissions: Iterable[Submission],
    problem_id: str,
    started_at: datetime,
    expires_at: datetime | None = None,
) -> int | None:
    """Seconds from ``started_at`` to the earliest accepted submission of the problem.

    Order of ``submissions`` does not matter. Submissions before the start or
    after ``expires_at`` are ignored. Elapsed time is rounded half-up to whole
    seconds.
    """
    best: float | None = None
    for sub in submissions:
        if sub.problem_id != problem_id or not sub.accepted or sub.submitted_at < started_at:
            continue
        if expires_at is not None and sub.submitted_at > expires_at:
            continue
        elapsed = (sub.submitted_at - started_at).total_seconds()
        if best is None or elapsed < best:
            best = elapsed
    if best is None:
        return None
    return math.floor(best + 0.5)


def should_resolve(
    challenger_time: int | None,
    challenged_time: int | None,
    expires_at: datetime,
    now: datetime,
) -> bool:
    both_solved = challenger_time is not None and challenged_time is not None
    return both_solved or now >= expires_at


def decide_winner(
    challenger_id: int,
    challenged_id: int,
    challenger_time: int | None,
    challenged_time: int | None,
) -> int | None:
    """Winner of a duel being resolved, or None for a draw.

    Faster solve wins; equal times go to the challenger. A lone solver wins.
    """
    if challenger_time is not None and challenged_time is not None:
        return challenger_id if challenger_time <= challenged_time else challenged_id
    if challenger_time is not None:
        return challenger_id
    if challenged_time is not None:
        return challenged_id
    return None


# ---------------------------------------------------------------------------
# Resolution (persisted)
# ---------------------------------------------------------------------------


async def resolve_duel(
    db: AsyncSession,
    notifier: Notifier | None,
    duel: Duel,
    challenger_time: int | None,
    challenged_time: int | None,
    settings: Settings,
    now: datetime | None = None,
) -> bool:
    """Complete an active duel and pay out. False if it was already resolved."""
    validate_transition(duel.status, COMPLETED)
    winner_id = decide_winner(duel.challenger_id, duel.challenged_id, challenger_time, challenged_time)

    flipped = await db.execute(
        update(Duel)
        .where(Duel.id == duel.id, Duel.status == ACTIVE)
        .values(
            status=COMPLETED,
            winner_id=winner_id,
            challenger_solve_time=challenger_time,
            challenged_solve_time=challenged_time,
            completed_at=now or utc_now(),
        )
        .execution_options(synchronize_session="evaluate")
    )
    if flipped.rowcount == 0:
        logger.info("Duel %s was resolved by another run", duel.id)
        return False

    reference = f"duel_{duel.id}"
    if winner_id is None:
        for uid in (duel.challenger_id, duel.challenged_id):
            await award_xp(db, notifier, uid, settings.xp_duel_loss, "Duel draw", reference)
            if notifier is not None:
                await notifier.notify(
                    uid, "duel_result", "Duel Draw",
                    f"Nobody solved {duel.problem_id} in time. +{settings.xp_duel_loss} XP for participating!",
                    {"duel_id": duel.id, "url": "/duels"},
                )
        return True

    loser_id = duel.challenged_id if winner_id == duel.challenger_id else duel.challenger_id
    await award_xp(db, notifier, winner_id, settings.xp_duel_win, "Duel won", reference)
    await award_xp(db, notifier, loser_id, settings.xp_duel_loss, "Duel participation", reference)

    if notifier is not None:
        winner = await db.get(Profile, winner_id)
        winner_name = (winner.display_name if winner else None) or "Opponent"
        await notifier.notify(
            winner_id, "duel_result", "Duel Won!",
            f"You won the duel! +{settings.xp_duel_win} XP",
            {"duel_id": duel.id, "url": "/duels"},
        )
        await notifier.notify(
            loser_id, "duel_result", "Duel Result",
            f"{winner_name} won the duel. +{settings.xp_duel_loss} XP for participating!",
            {"duel_id": duel.id, "url": "/duels"},
        )
    return True


async def expire_pending_duels(db: AsyncSession, settings: Settings, now: datetime | None = None) -> int:
    """Bulk-expire pending duels older than the pending TTL. Returns count expired."""
    now = now or utc_now()
    cutoff = now - timedelta(hours=settings.duel_pending_ttl_hours)
    result = await db.execute(
        update(Duel)
        .where(Duel.status == PENDING, Duel.created_at < cutoff)
        .values(status=EXPIRED, completed_at=now)
        .execution_options(synchronize_session="evaluate")
    )
    return result.rowcount or 0


async def check_duels(
    db: AsyncSession,
    notifier: Notifier | None,
    source: SubmissionSource,
    settings: Settings,
    now: datetime | None = None,
) -> dict[str, int]:
    """Resolver job: expire stale challenges, then poll and resolve active duels.

    Duels are polled one at a time with ``duel_poll_delay_seconds`` between
    them. A platform failure or missing handle skips that duel until the
    next run.
    """
    now = now or utc_now()
    counts = {"expired": 0, "resolved": 0, "skipped": 0, "failed": 0}

    counts["expired"] = await expire_pending_duels(db, settings, now)
    await db.commit()

    result = await db.execute(select(Duel.id).where(Duel.status == ACTIVE).order_by(Duel.id))
    duel_ids = list(result.scalars().all())

    for i, duel_id in enumerate(duel_ids):
        if i > 0:
            await asyncio.sleep(settings.duel_poll_delay_seconds)
        try:
            duel = await get_duel(db, duel_id)
            if duel.status != ACTIVE or duel.started_at is None:
                continue
            expires_at = duel.expires_at or duel.started_at + timedelta(minutes=duel.time_limit_minutes)

            handles = dict(
                (
                    await db.execute(
                        select(Profile.id, Profile.cf_handle).where(
                            Profile.id.in_([duel.challenger_id, duel.challenged_id])
                        )
                    )
                ).all()
            )
            challenger_handle = handles.get(duel.challenger_id)
            challenged_handle = handles.get(duel.challenged_id)
            if not challenger_handle or not challenged_handle:
                logger.warning("Duel %s: participant without a Codeforces handle, skipping", duel_id)
                counts["skipped"] += 1
                continue

            try:
                challenger_subs = await source.fetch_submissions(challenger_handle, settings.duel_history_window)
                challenged_subs = await source.fetch_submissions(challenged_handle, settings.duel_history_window)
            except PlatformError as exc:
                logger.warning("Duel %s: platform fetch failed, skipping: %s", duel_id, exc)
                counts["skipped"] += 1
                continue

            challenger_time = find_solve_time(challenger_subs, duel.problem_id, duel.started_at, expires_at)
            challenged_time = find_solve_time(challenged_subs, duel.problem_id, duel.started_at, expires_at)
            if not should_resolve(challenger_time, challenged_time, expires_at, now):
                continue

            if await resolve_duel(db, notifier, duel, challenger_time, challenged_time, settings, now):
                counts["resolved"] += 1
            await db.commit()
        except Exception:
            logger.exception("Failed to check duel %s", duel_id)
            await db.rollback()
            counts["failed"] += 1

    logger.info("Duel check complete: %s", counts)
    return counts
