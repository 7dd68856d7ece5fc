"""Badge seeding and automatic awards."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from coarc.db.models import Badge, CfSubmission, Notification, Quest, UserBadge, UserQuest, XPLogEntry
from coarc.gamification.badge_service import check_and_award
from coarc.gamification.seed import BADGE_SEED_DATA, seed_badges
from coarc.gamification.streak_service import process_all_streaks
from coarc.gamification.user_stats import compute_user_stats
from coarc.notifications.service import Notifier
from tests.conftest import NOW

_sub_ids = iter(range(500_000, 600_000))


async def add_solve(db, user_id: int, problem_id: str, at: datetime = NOW, tags: list[str] | None = None) -> None:
    db.add(CfSubmission(
        user_id=user_id,
        cf_submission_id=next(_sub_ids),
        problem_id=problem_id,
        verdict="OK",
        tags=tags or [],
        submitted_at=at,
    ))
    await db.commit()


async def earned_names(db, user_id: int) -> set[str]:
    result = await db.execute(
        select(Badge.name).join(UserBadge, UserBadge.badge_id == Badge.id).where(UserBadge.user_id == user_id)
    )
    return set(result.scalars().all())


class TestSeed:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, db_session):
        await seed_badges(db_session)
        await seed_badges(db_session)

        count = (await db_session.execute(select(func.count()).select_from(Badge))).scalar_one()
        assert count == len(BADGE_SEED_DATA)

    @pytest.mark.asyncio
    async def test_reseed_updates_definition(self, db_session):
        db_session.add(Badge(name="On Fire", description="old", condition_value={"type": "streak", "days": 3}))
        await db_session.commit()

        await seed_badges(db_session)

        badge = (await db_session.execute(select(Badge).where(Badge.name == "On Fire"))).scalar_one()
        await db_session.refresh(badge)
        assert badge.condition_value == {"type": "streak", "days": 7}


class TestCheckAndAward:
    @pytest.mark.asyncio
    async def test_first_solve_earns_first_blood(self, db_session, make_profile, settings):
        await seed_badges(db_session)
        user = await make_profile()
        await add_solve(db_session, user.id, "1900A")

        awarded = await check_and_award(db_session, Notifier(db_session), user.id, settings)
        await db_session.commit()

        assert len(awarded) == 1
        assert await earned_names(db_session, user.id) == {"First Blood"}
        await db_session.refresh(user)
        assert user.xp == settings.xp_badge_earned
        ref = (await db_session.execute(select(XPLogEntry.reference_id))).scalar_one()
        assert ref == f"badge_{awarded[0]}"
        types = (await db_session.execute(select(Notification.type))).scalars().all()
        assert types == ["badge_earned"]

    @pytest.mark.asyncio
    async def test_badge_is_awarded_once(self, db_session, make_profile, settings):
        await seed_badges(db_session)
        user = await make_profile()
        await add_solve(db_session, user.id, "1900A")

        await check_and_award(db_session, None, user.id, settings)
        again = await check_and_award(db_session, None, user.id, settings)
        await db_session.commit()

        assert again == []
        await db_session.refresh(user)
        assert user.xp == settings.xp_badge_earned
        rows = (await db_session.execute(select(func.count()).select_from(UserBadge))).scalar_one()
        assert rows == 1

    @pytest.mark.asyncio
    async def test_unknown_condition_type_is_ignored(self, db_session, make_profile, settings):
        db_session.add(Badge(name="Moonlighter", condition_value={"type": "moon_phase", "phase": "full"}))
        db_session.add(Badge(name="Broken", condition_value={"type": "streak"}))
        await db_session.commit()
        user = await make_profile(current_streak=100)

        assert await check_and_award(db_session, None, user.id, settings) == []

    @pytest.mark.asyncio
    async def test_manual_badges_are_never_auto_awarded(self, db_session, make_profile, settings):
        db_session.add(Badge(name="Contest Organizer", condition_type="manual",
                             condition_value={"type": "total_solves", "count": 0}))
        await db_session.commit()
        user = await make_profile()

        assert await check_and_award(db_session, None, user.id, settings) == []

    @pytest.mark.asyncio
    async def test_night_owl_uses_local_hour(self, db_session, make_profile, settings):
        await seed_badges(db_session)
        user = await make_profile()
        # 21:00 UTC is 02:30 local
        await add_solve(db_session, user.id, "1A", at=datetime(2026, 3, 9, 21, 0, tzinfo=timezone.utc))

        await check_and_award(db_session, None, user.id, settings)
        await db_session.commit()

        assert await earned_names(db_session, user.id) == {"First Blood", "Night Owl"}

    @pytest.mark.asyncio
    async def test_phoenix_after_restarting_lost_streak(self, db_session, make_profile, settings):
        await seed_badges(db_session)
        user = await make_profile(current_streak=1, last_lost_streak=9)

        await check_and_award(db_session, None, user.id, settings)
        await db_session.commit()

        assert "Phoenix" in await earned_names(db_session, user.id)

    @pytest.mark.asyncio
    async def test_quest_master_needs_every_quest_of_the_week(self, db_session, make_profile, settings):
        await seed_badges(db_session)
        user = await make_profile()
        week = date(2026, 3, 9)
        q1, q2 = Quest(title="Solve 3 DP", week_start=week), Quest(title="Win a duel", week_start=week)
        db_session.add_all([q1, q2])
        await db_session.flush()
        db_session.add(UserQuest(user_id=user.id, quest_id=q1.id, completed=True))
        await db_session.commit()

        await check_and_award(db_session, None, user.id, settings)
        assert "Quest Master" not in await earned_names(db_session, user.id)

        db_session.add(UserQuest(user_id=user.id, quest_id=q2.id, completed=True))
        await db_session.commit()
        await check_and_award(db_session, None, user.id, settings)
        await db_session.commit()
        assert "Quest Master" in await earned_names(db_session, user.id)

    @pytest.mark.asyncio
    async def test_nightly_streak_processing_awards_streak_badge(self, db_session, make_profile, settings):
        await seed_badges(db_session)
        user = await make_profile(current_streak=7, longest_streak=7, last_solve_date=date(2026, 3, 9))

        await process_all_streaks(db_session, None, settings, now=NOW)

        assert "On Fire" in await earned_names(db_session, user.id)
        await db_session.refresh(user)
        # 35 streak bonus + 25 badge
        assert user.xp == 60


class TestUserStats:
    @pytest.mark.asyncio
    async def test_topics_and_hours(self, db_session, make_profile, settings):
        user = await make_profile()
        await add_solve(db_session, user.id, "1A", tags=["dp", "greedy"])
        await add_solve(db_session, user.id, "2B", at=NOW + timedelta(hours=1), tags=["dp", "graphs"])

        stats = await compute_user_stats(db_session, user.id, settings.timezone_offset_minutes)

        assert stats.total_solves == 2
        assert stats.unique_topics == 3
        assert stats.solve_hours[11] == 1  # 06:00 UTC -> 11:30 local
        assert stats.solve_hours[12] == 1

    @pytest.mark.asyncio
    async def test_missing_profile(self, db_session, settings):
        assert await compute_user_stats(db_session, 12345, settings.timezone_offset_minutes) is None
