"""Badge award service with duplicate prevention and notification."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coarc.config import Settings
from coarc.db.models import Badge, UserBadge
from coarc.gamification.badge_conditions import evaluate_condition
from coarc.gamification.user_stats import compute_user_stats
from coarc.gamification.xp_service import award_xp

if TYPE_CHECKING:
    from coarc.notifications.service import Notifier

logger = logging.getLogger(__name__)


async def get_earned_badge_ids(db: AsyncSession, user_id: int) -> set[int]:
    result = await db.execute(select(UserBadge.badge_id).where(UserBadge.user_id == user_id))
    return set(result.scalars().all())


async def _insert_user_badge(db: AsyncSession, user_id: int, badge_id: int) -> bool:
    """Insert the user_badges row. False if another run already inserted it."""
    try:
        async with db.begin_nested():
            db.add(UserBadge(user_id=user_id, badge_id=badge_id, earned_at=datetime.now(timezone.utc)))
            await db.flush()
    except IntegrityError:
        logger.debug("Badge %s already awarded to user %s", badge_id, user_id)
        return False
    return True


async def check_and_award(
    db: AsyncSession,
    notifier: Notifier | None,
    user_id: int,
    settings: Settings,
) -> list[int]:
    """Evaluate every unearned auto badge for a user and award the ones now met.

    Returns the ids of badges granted by this call. For each grant:
    1. Insert into user_badges (UNIQUE; a conflict skips this badge only)
    2. Grant badge XP (idempotent via reference_id ``badge_{id}``)
    3. Emit badge_earned notification
    """
    result = await db.execute(
        select(Badge).where(Badge.condition_type == "auto").order_by(Badge.id)
    )
    badges = result.scalars().all()
    if not badges:
        return []

    earned = await get_earned_badge_ids(db, user_id)
    candidates = [b for b in badges if b.id not in earned and b.condition_value]
    if not candidates:
        return []

    stats = await compute_user_stats(db, user_id, settings.timezone_offset_minutes)
    if stats is None:
        logger.warning("check_and_award: no profile for user %s", user_id)
        return []

    awarded: list[int] = []
    for badge in candidates:
        if not evaluate_condition(badge.condition_value, stats):
            continue
        if not await _insert_user_badge(db, user_id, badge.id):
            continue

        awarded.append(badge.id)
        await award_xp(
            db, notifier, user_id, settings.xp_badge_earned,
            f"Badge earned: {badge.name}",
            f"badge_{badge.id}",
        )
        if notifier is not None:
            await notifier.notify(
                user_id,
                "badge_earned",
                "Badge Unlocked!",
                f'You earned the "{badge.name}" badge!',
                {"badge_id": badge.id, "url": "/profile/me"},
            )

    if awarded:
        logger.info("Awarded badges %s to user %s", awarded, user_id)
    return awarded
