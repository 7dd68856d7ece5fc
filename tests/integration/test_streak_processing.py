"""Nightly streak processing, shields and per-solve updates.

NOW is 11:30 local on 2026-03-10, so "yesterday" is 2026-03-09.
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from coarc.db.models import Notification, XPLogEntry
from coarc.gamification import streak_service
from coarc.gamification.streak_service import (
    process_all_streaks,
    send_streak_warnings,
    streak_xp,
    update_streak,
)
from coarc.notifications.service import Notifier
from tests.conftest import NOW, RecordingRedis

TODAY = date(2026, 3, 10)
YESTERDAY = date(2026, 3, 9)


async def notification_types(db, user_id: int) -> list[str]:
    result = await db.execute(select(Notification.type).where(Notification.user_id == user_id).order_by(Notification.id))
    return list(result.scalars().all())


class TestStreakXP:
    @pytest.mark.parametrize("streak,expected", [(1, 5), (3, 15), (7, 35), (10, 50), (25, 50)])
    def test_bonus_grows_then_caps(self, streak, expected):
        assert streak_xp(streak, base=5, cap=50) == expected

    def test_cap_below_day_10(self):
        assert streak_xp(9, base=10, cap=60) == 60


class TestNightlyProcessing:
    @pytest.mark.asyncio
    async def test_continuation_pays_bonus_for_yesterday(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=3, longest_streak=3, last_solve_date=YESTERDAY)

        counts = await process_all_streaks(db_session, Notifier(db_session), settings, now=NOW)

        assert counts["processed"] == 1
        assert counts["continued"] == 1
        await db_session.refresh(user)
        assert user.xp == 15
        assert user.current_streak == 3
        assert user.last_streak_processed == TODAY
        entry = (await db_session.execute(select(XPLogEntry))).scalar_one()
        assert entry.reference_id == "streak_2026-03-09"
        assert entry.reason == "Streak bonus (day 3)"

    @pytest.mark.asyncio
    async def test_second_run_same_day_is_noop(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=3, last_solve_date=YESTERDAY)

        await process_all_streaks(db_session, None, settings, now=NOW)
        counts = await process_all_streaks(db_session, None, settings, now=NOW + timedelta(hours=2))

        assert counts["processed"] == 0
        await db_session.refresh(user)
        assert user.xp == 15

    @pytest.mark.asyncio
    async def test_shield_banked_on_multiple_of_seven(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=14, last_solve_date=YESTERDAY, streak_shields=1)

        await process_all_streaks(db_session, None, settings, now=NOW)

        await db_session.refresh(user)
        assert user.streak_shields == 2
        assert user.xp == 50

    @pytest.mark.asyncio
    async def test_missed_day_consumes_shield(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=5, longest_streak=5, last_solve_date=date(2026, 3, 8), streak_shields=1)

        counts = await process_all_streaks(db_session, Notifier(db_session), settings, now=NOW)

        assert counts["shielded"] == 1
        await db_session.refresh(user)
        assert user.streak_shields == 0
        assert user.current_streak == 5
        assert user.shield_protected_through == YESTERDAY
        assert user.xp == 0
        assert await notification_types(db_session, user.id) == ["streak_saved"]

    @pytest.mark.asyncio
    async def test_shielded_gap_lets_todays_solve_continue(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=5, longest_streak=5, last_solve_date=date(2026, 3, 8), streak_shields=1)

        await process_all_streaks(db_session, None, settings, now=NOW)
        await update_streak(db_session, user.id, settings, now=NOW)
        await db_session.commit()

        await db_session.refresh(user)
        assert user.current_streak == 6
        assert user.longest_streak == 6
        assert user.last_solve_date == TODAY

    @pytest.mark.asyncio
    async def test_missed_day_without_shield_resets(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=9, longest_streak=12, last_solve_date=date(2026, 3, 7))

        counts = await process_all_streaks(db_session, Notifier(db_session), settings, now=NOW)

        assert counts["reset"] == 1
        await db_session.refresh(user)
        assert user.current_streak == 0
        assert user.longest_streak == 12
        assert user.last_lost_streak == 9
        assert await notification_types(db_session, user.id) == ["streak_lost"]

    @pytest.mark.asyncio
    async def test_lapse_with_zero_streak_still_consumes_shield(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=0, last_solve_date=date(2026, 3, 1), streak_shields=2)

        counts = await process_all_streaks(db_session, None, settings, now=NOW)

        assert counts["shielded"] == 1
        await db_session.refresh(user)
        assert user.streak_shields == 1
        assert user.shield_protected_through == YESTERDAY
        assert user.current_streak == 0
        assert user.last_streak_processed == TODAY

    @pytest.mark.asyncio
    async def test_lapse_with_zero_streak_and_no_shield_is_unchanged(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=0, last_solve_date=date(2026, 3, 1))

        counts = await process_all_streaks(db_session, Notifier(db_session), settings, now=NOW)

        assert counts["reset"] == 0
        await db_session.refresh(user)
        assert user.last_lost_streak == 0
        assert await notification_types(db_session, user.id) == []

    @pytest.mark.asyncio
    async def test_user_without_history_is_stamped(self, db_session, make_profile, settings):
        user = await make_profile()

        counts = await process_all_streaks(db_session, None, settings, now=NOW)

        assert counts["processed"] == 1
        await db_session.refresh(user)
        assert user.last_streak_processed == TODAY
        assert user.current_streak == 0

    @pytest.mark.asyncio
    async def test_week_long_streak_banks_shield_next_night(self, db_session, make_profile, settings):
        """Solve on day 7 of a streak; the following night pays day 7 and banks a shield."""
        user = await make_profile(current_streak=6, longest_streak=6, last_solve_date=YESTERDAY)

        await update_streak(db_session, user.id, settings, now=NOW)
        await db_session.commit()
        await process_all_streaks(db_session, None, settings, now=NOW + timedelta(days=1))

        await db_session.refresh(user)
        assert user.current_streak == 7
        assert user.streak_shields == 1
        assert user.xp == 35
        refs = (await db_session.execute(select(XPLogEntry.reference_id))).scalars().all()
        assert refs == ["streak_2026-03-10"]

    @pytest.mark.asyncio
    async def test_failing_user_is_rolled_back_and_retried(self, db_session, make_profile, settings, monkeypatch):
        first = await make_profile(current_streak=2, last_solve_date=YESTERDAY)
        broken = await make_profile(current_streak=4, last_solve_date=YESTERDAY)
        last = await make_profile(current_streak=1, last_solve_date=YESTERDAY)
        broken_id = broken.id
        real_check = streak_service.check_and_award

        async def flaky_check(db, notifier, user_id, settings):
            if user_id == broken_id:
                raise RuntimeError("stats query failed")
            return await real_check(db, notifier, user_id, settings)

        monkeypatch.setattr(streak_service, "check_and_award", flaky_check)
        counts = await process_all_streaks(db_session, None, settings, now=NOW)

        assert counts["failed"] == 1
        assert counts["processed"] == 2
        for profile in (first, broken, last):
            await db_session.refresh(profile)
        assert first.last_streak_processed == TODAY
        assert last.last_streak_processed == TODAY
        assert broken.last_streak_processed is None
        assert broken.xp == 0

        monkeypatch.setattr(streak_service, "check_and_award", real_check)
        counts = await process_all_streaks(db_session, None, settings, now=NOW)
        assert counts["processed"] == 1
        await db_session.refresh(broken)
        assert broken.xp == 20

    @pytest.mark.asyncio
    async def test_rolled_back_user_gets_no_push(self, db_session, make_profile, settings, monkeypatch):
        kept = await make_profile(current_streak=5, last_solve_date=date(2026, 3, 7))
        broken = await make_profile(current_streak=9, last_solve_date=date(2026, 3, 7))
        kept_id, broken_id = kept.id, broken.id
        real_check = streak_service.check_and_award

        async def flaky_check(db, notifier, user_id, settings):
            if user_id == broken_id:
                raise RuntimeError("stats query failed")
            return await real_check(db, notifier, user_id, settings)

        monkeypatch.setattr(streak_service, "check_and_award", flaky_check)
        redis = RecordingRedis()
        notifier = Notifier(db_session, redis)
        await process_all_streaks(db_session, notifier, settings, now=NOW)
        await notifier.send_pending()

        assert [channel for channel, _ in redis.published] == [f"ws:user:{kept_id}"]


class TestUpdateStreak:
    @pytest.mark.asyncio
    async def test_first_solve_starts_streak(self, db_session, make_profile, settings):
        user = await make_profile()
        await update_streak(db_session, user.id, settings, now=NOW)
        await db_session.refresh(user)
        assert user.current_streak == 1
        assert user.longest_streak == 1

    @pytest.mark.asyncio
    async def test_same_day_solve_is_noop(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=4, longest_streak=4, last_solve_date=TODAY)
        await update_streak(db_session, user.id, settings, now=NOW)
        await db_session.refresh(user)
        assert user.current_streak == 4

    @pytest.mark.asyncio
    async def test_gap_restarts_at_one(self, db_session, make_profile, settings):
        user = await make_profile(current_streak=0, longest_streak=20, last_solve_date=date(2026, 3, 1))
        await update_streak(db_session, user.id, settings, now=NOW)
        await db_session.refresh(user)
        assert user.current_streak == 1
        assert user.longest_streak == 20

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, settings):
        assert await update_streak(db_session, 999, settings, now=NOW) is None


class TestStreakWarnings:
    @pytest.mark.asyncio
    async def test_warns_only_live_streaks_not_yet_extended(self, db_session, make_profile, settings):
        at_risk = await make_profile(current_streak=3, last_solve_date=YESTERDAY)
        safe = await make_profile(current_streak=3, last_solve_date=TODAY)
        short = await make_profile(current_streak=1, last_solve_date=YESTERDAY)

        sent = await send_streak_warnings(db_session, Notifier(db_session), settings, now=NOW)

        assert sent == 1
        assert await notification_types(db_session, at_risk.id) == ["streak_warning"]
        assert await notification_types(db_session, safe.id) == []
        assert await notification_types(db_session, short.id) == []
