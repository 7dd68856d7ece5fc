"""Weekly XP ranking: rank climbs, overtakes and dark-horse alerts.

Each run ranks every profile by XP earned since local Monday, diffs it
against the previous snapshot and stores the new one. ``rank_climb`` on a
profile only ever grows (it is the best single upward move seen), which is
what the rank_climb badge reads.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coarc.config import Settings
from coarc.db.models import Profile, RankingSnapshot, XPLogEntry
from coarc.gamification.badge_service import check_and_award
from coarc.gamification.day_utils import local_day_start_utc, local_today, utc_now, week_start

if TYPE_CHECKING:
    from coarc.notifications.service import Notifier

logger = logging.getLogger(__name__)

DARK_HORSE_AVG_MULTIPLIER = 3
DARK_HORSE_MIN_XP = 50
DARK_HORSE_MAX_RANK = 20


def rank_users(profiles: list[tuple[int, str | None]], weekly_xp: dict[int, int]) -> list[dict[str, Any]]:
    """Order by weekly XP (desc), ties by user id, and number ranks from 1."""
    rows = sorted(
        ({"user_id": uid, "display_name": name, "weekly_xp": weekly_xp.get(uid, 0)} for uid, name in profiles),
        key=lambda r: (-r["weekly_xp"], r["user_id"]),
    )
    for i, row in enumerate(rows, start=1):
        row["rank"] = i
    return rows


def find_dark_horses(ranking: list[dict[str, Any]], weekly_xp: dict[int, int]) -> list[dict[str, Any]]:
    """Users far ahead of the weekly average (over users who earned anything)."""
    if not weekly_xp:
        return []
    average = sum(weekly_xp.values()) / len(weekly_xp)
    return [
        row for row in ranking
        if row["weekly_xp"] > average * DARK_HORSE_AVG_MULTIPLIER
        and row["weekly_xp"] > DARK_HORSE_MIN_XP
        and row["rank"] <= DARK_HORSE_MAX_RANK
    ]


async def compute_rankings(
    db: AsyncSession,
    notifier: Notifier | None,
    settings: Settings,
    now: datetime | None = None,
) -> dict[str, int]:
    now = now or utc_now()
    monday = week_start(local_today(settings.timezone_offset_minutes, now))
    since = local_day_start_utc(monday, settings.timezone_offset_minutes)

    sums = await db.execute(
        select(XPLogEntry.user_id, func.sum(XPLogEntry.amount))
        .where(XPLogEntry.created_at >= since)
        .group_by(XPLogEntry.user_id)
    )
    weekly_xp = {uid: int(total or 0) for uid, total in sums.all()}

    profiles = (await db.execute(select(Profile.id, Profile.display_name))).all()
    ranking = rank_users([(uid, name) for uid, name in profiles], weekly_xp)
    rank_by_user = {row["user_id"]: row["rank"] for row in ranking}

    previous = (
        await db.execute(
            select(RankingSnapshot).order_by(RankingSnapshot.created_at.desc(), RankingSnapshot.id.desc()).limit(1)
        )
    ).scalar_one_or_none()
    prev_rank = {int(row["user_id"]): int(row["rank"]) for row in (previous.ranking if previous else [])}

    climbers: list[int] = []
    overtakes = 0
    for row in ranking:
        before = prev_rank.get(row["user_id"])
        if before is None or before <= row["rank"]:
            continue
        climb = before - row["rank"]
        profile = await db.get(Profile, row["user_id"])
        if profile is not None and climb > profile.rank_climb:
            profile.rank_climb = climb
            climbers.append(profile.id)

        # Everyone who was ahead before and is behind now got overtaken
        if notifier is None:
            continue
        name = row["display_name"] or "Someone"
        for other in ranking:
            other_before = prev_rank.get(other["user_id"])
            if other["user_id"] == row["user_id"] or other_before is None:
                continue
            if other_before < before and other["rank"] > row["rank"]:
                await notifier.notify(
                    other["user_id"], "overtake", "You've Been Overtaken!",
                    f"{name} just passed you on the leaderboard. You're now #{rank_by_user[other['user_id']]}.",
                    {"url": "/leaderboard"},
                )
                overtakes += 1
    await db.flush()

    for user_id in climbers:
        await check_and_award(db, notifier, user_id, settings)

    dark_horses = find_dark_horses(ranking, weekly_xp)
    if notifier is not None:
        for row in dark_horses:
            await notifier.broadcast(
                "dark_horse",
                "Dark Horse Alert!",
                f"{row['display_name'] or 'Someone'} surged to #{row['rank']} this week with {row['weekly_xp']} XP!",
                {"user_id": row["user_id"], "url": "/leaderboard"},
            )

    db.add(RankingSnapshot(
        week_start=monday,
        ranking=[{"user_id": r["user_id"], "rank": r["rank"], "weekly_xp": r["weekly_xp"]} for r in ranking],
        created_at=now,
    ))
    await db.commit()

    summary = {
        "total_users": len(ranking),
        "climbers": len(climbers),
        "overtakes": overtakes,
        "dark_horses": len(dark_horses),
    }
    logger.info("Rankings computed: %s", summary)
    return summary
