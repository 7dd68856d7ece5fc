"""Notification creation and realtime push.

Notifications are:
1. Persisted in the database (inside their own SAVEPOINT)
2. Pushed to the user via Redis pub/sub (``ws:user:{user_id}``) once the
   surrounding transaction commits

Pushes queued inside a transaction that rolls back are dropped. Committed
pushes are sent by ``send_pending()``; the job runner calls it when a job's
session is done.

Delivery is fire-and-forget for callers: a failed insert or publish is
logged and never rolls back the state change that triggered it.

Types: level_up, badge_earned, streak_saved, streak_lost, streak_warning,
duel_challenge, duel_result, overtake, dark_horse, weekly_digest
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

from coarc.db.models import Notification, Profile

logger = logging.getLogger(__name__)

BROADCAST_CHANNEL = "pubsub:broadcast"


def _ws_payload(notification: Notification) -> dict[str, Any]:
    return {
        "event": "notification",
        "data": {
            "id": str(notification.id),
            "type": notification.type,
            "title": notification.title,
            "body": notification.body,
            "data": notification.data or {},
            "timestamp": notification.created_at.isoformat() if notification.created_at else None,
            "read": False,
        },
    }


class Notifier:
    """Notifier bound to one session. ``redis=None`` disables push."""

    def __init__(self, db: AsyncSession, redis: object | None = None) -> None:
        self.db = db
        self.redis = redis
        self._uncommitted: list[tuple[str, dict[str, Any]]] = []
        self._committed: list[tuple[str, dict[str, Any]]] = []
        if redis is not None:
            event.listen(db.sync_session, "after_commit", self._on_commit)
            event.listen(db.sync_session, "after_soft_rollback", self._on_rollback)

    def _on_commit(self, session: Session) -> None:
        # Releasing a SAVEPOINT also fires after_commit
        if session.in_nested_transaction():
            return
        self._committed.extend(self._uncommitted)
        self._uncommitted.clear()

    def _on_rollback(self, session: Session, previous_transaction: SessionTransaction) -> None:
        if previous_transaction.parent is None:
            self._uncommitted.clear()

    def detach(self) -> None:
        """Stop tracking the session's transactions."""
        if self.redis is None:
            return
        event.remove(self.db.sync_session, "after_commit", self._on_commit)
        event.remove(self.db.sync_session, "after_soft_rollback", self._on_rollback)

    async def notify(
        self,
        user_id: int,
        type_: str,
        title: str,
        body: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> Notification | None:
        """Persist a notification and queue its push. Returns None if it could not be stored."""
        notification = Notification(
            user_id=user_id,
            type=type_,
            title=title,
            body=body,
            data=data or {},
            read=False,
            push_sent=False,
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(notification)
                await self.db.flush()
        except Exception:
            logger.warning("Failed to store %s notification for user %s", type_, user_id, exc_info=True)
            return None

        self._queue(f"ws:user:{user_id}", _ws_payload(notification))
        return notification

    async def broadcast(
        self,
        type_: str,
        title: str,
        body: str | None = None,
        data: dict[str, Any] | None = None,
        exclude_user_id: int | None = None,
    ) -> int:
        """Notify every profile. Returns the number of notifications stored."""
        query = select(Profile.id)
        if exclude_user_id is not None:
            query = query.where(Profile.id != exclude_user_id)
        user_ids = (await self.db.execute(query)).scalars().all()

        now = datetime.now(timezone.utc)
        rows = [
            Notification(
                user_id=uid,
                type=type_,
                title=title,
                body=body,
                data=data or {},
                read=False,
                push_sent=False,
                created_at=now,
            )
            for uid in user_ids
        ]
        try:
            async with self.db.begin_nested():
                self.db.add_all(rows)
                await self.db.flush()
        except Exception:
            logger.warning("Failed to store %s broadcast", type_, exc_info=True)
            return 0

        self._queue(
            BROADCAST_CHANNEL,
            {"event": "broadcast", "data": {"type": type_, "title": title, "body": body, "data": data or {}}},
        )
        return len(rows)

    def _queue(self, channel: str, payload: dict[str, Any]) -> None:
        if self.redis is not None:
            self._uncommitted.append((channel, payload))

    async def send_pending(self) -> int:
        """Publish every push whose transaction has committed. Returns how many were sent."""
        pending, self._committed = self._committed, []
        sent = 0
        for channel, payload in pending:
            try:
                await self.redis.publish(channel, json.dumps(payload))  # type: ignore[union-attr]
                sent += 1
            except Exception:
                logger.warning("Failed to push notification via %s", channel, exc_info=True)
        return sent
