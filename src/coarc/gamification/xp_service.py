"""XP ledger with idempotency and level-up detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coarc.db.models import Profile, XPLogEntry
from coarc.gamification.level_thresholds import compute_level

if TYPE_CHECKING:
    from coarc.notifications.service import Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XPAward:
    new_xp: int
    new_level: int
    leveled_up: bool
    duplicate: bool = False


async def get_profile(db: AsyncSession, user_id: int) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    return result.scalar_one_or_none()


async def has_reference(db: AsyncSession, user_id: int, reference_id: str) -> bool:
    result = await db.execute(
        select(XPLogEntry.id).where(
            XPLogEntry.user_id == user_id,
            XPLogEntry.reference_id == reference_id,
        )
    )
    return result.first() is not None


async def award_xp(
    db: AsyncSession,
    notifier: Notifier | None,
    user_id: int,
    amount: int,
    reason: str,
    reference_id: str | None = None,
) -> XPAward | None:
    """Append a ledger entry and update the profile's XP and level.

    Returns None if the profile does not exist. A ``reference_id`` that was
    already paid for this user returns ``duplicate=True`` and changes nothing.

    Steps:
    1. Insert into xp_log (SAVEPOINT; a unique violation means "already paid")
    2. Update profiles.xp
    3. Recompute level from xp
    4. If level went up, emit level_up notification
    """
    profile = await get_profile(db, user_id)
    if profile is None:
        logger.warning("award_xp: no profile for user %s, skipping %s", user_id, reason)
        return None

    # Cheap pre-check; the constraint below is what actually guarantees once-only
    if reference_id is not None and await has_reference(db, user_id, reference_id):
        return XPAward(profile.xp, profile.level, leveled_up=False, duplicate=True)

    now = datetime.now(timezone.utc)
    try:
        async with db.begin_nested():
            db.add(XPLogEntry(
                user_id=user_id,
                amount=amount,
                reason=reason,
                reference_id=reference_id,
                created_at=now,
            ))
            await db.flush()
    except IntegrityError:
        logger.debug("XP reference %s already recorded for user %s", reference_id, user_id)
        return XPAward(profile.xp, profile.level, leveled_up=False, duplicate=True)

    old_level = profile.level
    profile.xp += amount
    level_info = compute_level(profile.xp)
    profile.level = level_info["level"]
    profile.updated_at = now
    await db.flush()

    leveled_up = profile.level > old_level
    if leveled_up and notifier is not None:
        await notifier.notify(
            user_id,
            "level_up",
            "Level Up!",
            f"You reached level {profile.level}: {level_info['title']}",
            {"old_level": old_level, "new_level": profile.level, "title": level_info["title"]},
        )

    return XPAward(profile.xp, profile.level, leveled_up=leveled_up)
