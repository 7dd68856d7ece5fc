"""Default badge catalog. Every condition type has at least one auto badge."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from coarc.db.base import upsert_insert
from coarc.db.models import Badge

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Solving milestones
    {
        "name": "First Blood",
        "description": "Solve your first problem",
        "icon": "🩸",
        "condition_type": "auto",
        "condition_value": {"type": "total_solves", "count": 1},
    },
    {
        "name": "Century",
        "description": "Solve 100 problems across platforms",
        "icon": "💯",
        "condition_type": "auto",
        "condition_value": {"type": "total_solves", "count": 100},
    },
    {
        "name": "Half a Thousand",
        "description": "Solve 500 problems across platforms",
        "icon": "🏔️",
        "condition_type": "auto",
        "condition_value": {"type": "total_solves", "count": 500},
    },
    {
        "name": "Polymath",
        "description": "Solve problems in 15 different topics",
        "icon": "🧠",
        "condition_type": "auto",
        "condition_value": {"type": "unique_topics", "count": 15},
    },
    {
        "name": "Daily Devotee",
        "description": "Solve 30 problems of the day",
        "icon": "📅",
        "condition_type": "auto",
        "condition_value": {"type": "daily_solves", "count": 30},
    },
    # Streaks
    {
        "name": "On Fire",
        "description": "Keep a 7-day solving streak",
        "icon": "🔥",
        "condition_type": "auto",
        "condition_value": {"type": "streak", "days": 7},
    },
    {
        "name": "Unstoppable",
        "description": "Keep a 30-day solving streak",
        "icon": "⚡",
        "condition_type": "auto",
        "condition_value": {"type": "streak", "days": 30},
    },
    {
        "name": "Phoenix",
        "description": "Start again after losing a streak of 7 days or more",
        "icon": "🐦‍🔥",
        "condition_type": "auto",
        "condition_value": {"type": "streak_restart_after", "min_lost": 7},
    },
    # Time of day
    {
        "name": "Night Owl",
        "description": "Get an accepted solution between midnight and 4 AM",
        "icon": "🦉",
        "condition_type": "auto",
        "condition_value": {"type": "solve_hour_range", "start": 0, "end": 4},
    },
    {
        "name": "Early Bird",
        "description": "Get an accepted solution between 5 AM and 7 AM",
        "icon": "🐦",
        "condition_type": "auto",
        "condition_value": {"type": "solve_hour_range", "start": 5, "end": 7},
    },
    # Social
    {
        "name": "Sharer",
        "description": "Share 10 problems with the community",
        "icon": "📤",
        "condition_type": "auto",
        "condition_value": {"type": "problems_shared", "count": 10},
    },
    {
        "name": "Librarian",
        "description": "Have 5 resources approved",
        "icon": "📚",
        "condition_type": "auto",
        "condition_value": {"type": "resources_approved", "count": 5},
    },
    # Competition
    {
        "name": "Duelist",
        "description": "Win your first duel",
        "icon": "⚔️",
        "condition_type": "auto",
        "condition_value": {"type": "duels_won", "count": 1},
    },
    {
        "name": "Gladiator",
        "description": "Win 10 duels",
        "icon": "🛡️",
        "condition_type": "auto",
        "condition_value": {"type": "duels_won", "count": 10},
    },
    {
        "name": "Boss Slayer",
        "description": "Defeat 5 boss battles",
        "icon": "🐉",
        "condition_type": "auto",
        "condition_value": {"type": "bosses_defeated", "count": 5},
    },
    {
        "name": "First to the Throne",
        "description": "Be the first to solve a boss battle",
        "icon": "👑",
        "condition_type": "auto",
        "condition_value": {"type": "boss_first_solves", "count": 1},
    },
    {
        "name": "Quest Master",
        "description": "Complete every quest in a week",
        "icon": "🗺️",
        "condition_type": "auto",
        "condition_value": {"type": "all_quests_week", "count": 1},
    },
    {
        "name": "Dark Horse",
        "description": "Climb 5 places in the weekly ranking",
        "icon": "🐎",
        "condition_type": "auto",
        "condition_value": {"type": "rank_climb", "positions": 5},
    },
    # Granted by admins
    {
        "name": "Contest Organizer",
        "description": "Helped run a club contest",
        "icon": "🎤",
        "condition_type": "manual",
        "condition_value": None,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Upsert the default catalog by name. Returns number of badges seeded."""
    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        stmt = upsert_insert(db, Badge).values(**badge_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "description": stmt.excluded.description,
                "icon": stmt.excluded.icon,
                "condition_type": stmt.excluded.condition_type,
                "condition_value": stmt.excluded.condition_value,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
