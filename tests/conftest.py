"""Shared test fixtures.

Integration tests run the ORM against an in-memory SQLite database (one
fresh schema per test). No PostgreSQL, Redis or network access is needed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from coarc.config import Settings
from coarc.database import configure_sqlite
from coarc.db.base import Base
from coarc.db.models import Profile
from coarc.platforms.codeforces import Submission, UserInfo
from coarc.platforms.leetcode import LcUserStats

# 06:00 UTC is 11:30 local (UTC+05:30) on 2026-03-10, a Tuesday
NOW = datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        duel_poll_delay_seconds=0,
        sync_batch_delay_seconds=0,
        lc_sync_delay_seconds=0,
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    configure_sqlite(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_profile(db_session: AsyncSession) -> Callable[..., Awaitable[Profile]]:
    """Insert and commit a profile; keyword arguments override column defaults."""

    async def _make(**fields: Any) -> Profile:
        fields.setdefault("created_at", NOW)
        profile = Profile(**fields)
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


class FakeSubmissionSource:
    """In-process stand-in for the Codeforces client."""

    def __init__(self, by_handle: dict[str, list[Submission]] | None = None) -> None:
        self.by_handle = by_handle or {}
        self.infos: dict[str, UserInfo] = {}
        self.failing: dict[str, Exception] = {}
        self.calls: list[tuple[str, int]] = []

    async def fetch_submissions(self, handle: str, count: int) -> list[Submission]:
        self.calls.append((handle, count))
        if handle in self.failing:
            raise self.failing[handle]
        return list(self.by_handle.get(handle, []))[:count]

    async def fetch_user_info(self, handle: str) -> UserInfo:
        if handle in self.failing:
            raise self.failing[handle]
        return self.infos.get(handle, UserInfo(handle=handle))


class FakeLcSource:
    """In-process stand-in for the LeetCode client."""

    def __init__(self) -> None:
        self.stats: dict[str, LcUserStats] = {}
        self.failing: dict[str, Exception] = {}

    async def fetch_stats(self, handle: str) -> LcUserStats:
        if handle in self.failing:
            raise self.failing[handle]
        return self.stats.get(handle, LcUserStats(handle=handle))


class RecordingRedis:
    """Captures publish() calls."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        return 1


@pytest.fixture
def fake_source() -> FakeSubmissionSource:
    return FakeSubmissionSource()


@pytest.fixture
def fake_lc_source() -> FakeLcSource:
    return FakeLcSource()
