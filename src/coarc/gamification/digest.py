"""Weekly digest: class-wide summary of the last seven local days, broadcast once per week."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coarc.config import Settings
from coarc.db.models import CfSubmission, Profile, WeeklyDigest, XPLogEntry
from coarc.gamification.day_utils import local_day_start_utc, local_today, utc_now

if TYPE_CHECKING:
    from coarc.notifications.service import Notifier

logger = logging.getLogger(__name__)


async def top_earners(db: AsyncSession, since: datetime, limit: int) -> list[dict[str, Any]]:
    total = func.sum(XPLogEntry.amount).label("xp")
    result = await db.execute(
        select(XPLogEntry.user_id, Profile.display_name, total)
        .join(Profile, Profile.id == XPLogEntry.user_id)
        .where(XPLogEntry.created_at >= since)
        .group_by(XPLogEntry.user_id, Profile.display_name)
        .order_by(total.desc(), XPLogEntry.user_id)
        .limit(limit)
    )
    return [
        {"rank": i, "user_id": uid, "name": name or "Unknown", "xp": int(xp)}
        for i, (uid, name, xp) in enumerate(result.all(), start=1)
    ]


def digest_body(content: dict[str, Any]) -> str:
    lines = [f"Weekly Digest {content['week']}", "Top of the week:"]
    lines += [f"  {row['rank']}. {row['name']} - {row['xp']} XP" for row in content["top"]]
    lines.append(f"Class solved {content['class_solves']} problems this week!")
    lines.append(f"{content['active_streaks']} active streaks")
    return "\n".join(lines)


async def send_weekly_digest(
    db: AsyncSession,
    notifier: Notifier | None,
    settings: Settings,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Compile the digest for the seven local days before today and broadcast it.

    At most one digest is stored per week start; a second run for the same
    week is a no-op.
    """
    now = now or utc_now()
    week = local_today(settings.timezone_offset_minutes, now) - timedelta(days=7)
    since = local_day_start_utc(week, settings.timezone_offset_minutes)

    existing = await db.execute(select(WeeklyDigest.id).where(WeeklyDigest.week_start == week))
    if existing.scalar_one_or_none() is not None:
        return {"skipped": True, "reason": "Already generated"}

    class_solves = (
        await db.execute(
            select(func.count())
            .select_from(CfSubmission)
            .where(CfSubmission.verdict == "OK", CfSubmission.submitted_at >= since)
        )
    ).scalar_one()
    active_streaks = (
        await db.execute(select(func.count()).select_from(Profile).where(Profile.current_streak >= 1))
    ).scalar_one()

    content = {
        "week": week.isoformat(),
        "class_solves": class_solves,
        "top": await top_earners(db, since, settings.digest_top_count),
        "active_streaks": active_streaks,
        "generated_at": now.isoformat(),
    }
    try:
        async with db.begin_nested():
            db.add(WeeklyDigest(week_start=week, content=content, created_at=now))
            await db.flush()
    except IntegrityError:
        logger.info("Weekly digest for %s was generated by another run", week)
        return {"skipped": True, "reason": "Already generated"}

    notified = 0
    if notifier is not None:
        notified = await notifier.broadcast(
            "weekly_digest",
            "Your Weekly Digest is Here!",
            digest_body(content),
            {"url": "/announcements", "week": content["week"]},
        )
    await db.commit()

    logger.info("Weekly digest for %s sent to %d users", week, notified)
    return {"week": content["week"], "class_solves": class_solves, "notified": notified}
