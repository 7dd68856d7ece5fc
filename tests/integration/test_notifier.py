"""Notification storage and Redis push."""

from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from coarc.db.models import Notification
from coarc.notifications.service import BROADCAST_CHANNEL, Notifier
from tests.conftest import RecordingRedis


class TestNotify:
    @pytest.mark.asyncio
    async def test_persists_and_pushes_after_commit(self, db_session, make_profile):
        user = await make_profile()
        redis = RecordingRedis()
        notifier = Notifier(db_session, redis)

        notification = await notifier.notify(
            user.id, "badge_earned", "Badge Unlocked!", 'You earned the "Duelist" badge!', {"badge_id": 3}
        )
        assert await notifier.send_pending() == 0
        await db_session.commit()
        assert await notifier.send_pending() == 1

        assert notification is not None
        stored = (await db_session.execute(select(Notification))).scalar_one()
        assert stored.user_id == user.id
        assert stored.read is False

        channel, raw = redis.published[0]
        assert channel == f"ws:user:{user.id}"
        payload = json.loads(raw)
        assert payload["event"] == "notification"
        assert payload["data"]["type"] == "badge_earned"
        assert payload["data"]["data"] == {"badge_id": 3}

    @pytest.mark.asyncio
    async def test_rolled_back_notification_is_never_pushed(self, db_session, make_profile):
        user_id = (await make_profile()).id
        redis = RecordingRedis()
        notifier = Notifier(db_session, redis)

        await notifier.notify(user_id, "streak_lost", "Streak Lost")
        await db_session.rollback()
        await notifier.notify(user_id, "level_up", "Level Up!")
        await db_session.commit()
        await notifier.send_pending()

        assert [json.loads(raw)["data"]["type"] for _, raw in redis.published] == ["level_up"]
        assert (await db_session.execute(select(Notification.type))).scalars().all() == ["level_up"]

    @pytest.mark.asyncio
    async def test_pushes_are_sent_once(self, db_session, make_profile):
        user = await make_profile()
        redis = RecordingRedis()
        notifier = Notifier(db_session, redis)

        await notifier.notify(user.id, "level_up", "Level Up!")
        await db_session.commit()
        await notifier.send_pending()
        await notifier.send_pending()

        assert len(redis.published) == 1

    @pytest.mark.asyncio
    async def test_push_failure_is_swallowed(self, db_session, make_profile):
        user = await make_profile()
        notifier = Notifier(db_session, RecordingRedis(fail=True))

        notification = await notifier.notify(user.id, "streak_warning", "Hi")
        await db_session.commit()

        assert notification is not None
        assert await notifier.send_pending() == 0
        assert (await db_session.execute(select(Notification))).scalar_one().type == "streak_warning"

    @pytest.mark.asyncio
    async def test_without_redis_only_stores(self, db_session, make_profile):
        user = await make_profile()
        notifier = Notifier(db_session)
        assert await notifier.notify(user.id, "level_up", "Level Up!") is not None
        await db_session.commit()
        assert await notifier.send_pending() == 0


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_fans_out_to_every_profile(self, db_session, make_profile):
        a = await make_profile()
        b = await make_profile()
        c = await make_profile()
        redis = RecordingRedis()
        notifier = Notifier(db_session, redis)

        stored = await notifier.broadcast(
            "dark_horse", "Dark Horse Alert!", "c surged", {"user_id": c.id}, exclude_user_id=c.id
        )
        await db_session.commit()
        await notifier.send_pending()
        notifier.detach()

        assert stored == 2
        rows = (await db_session.execute(select(Notification.user_id))).scalars().all()
        assert sorted(rows) == sorted([a.id, b.id])
        assert [channel for channel, _ in redis.published] == [BROADCAST_CHANNEL]
