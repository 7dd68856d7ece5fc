"""Interval-guarded job runner.

The periodic trigger calls ``JobScheduler.run`` every few minutes. Jobs with
a minimum interval only do work once per real interval: the last successful
run is kept per job name in a ``JobStateStore`` and written only after the
job body returns. A job that raises leaves its marker untouched so the next
pass retries it. Jobs without an interval run on every pass and rely on
their own idempotency.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coarc.db.base import upsert_insert
from coarc.db.models import CronRun
from coarc.gamification.day_utils import local_hour, utc_now
from coarc.log_setup import job_context

logger = structlog.get_logger(__name__)


class JobStateStore(Protocol):
    async def get_last_run(self, job_name: str) -> datetime | None: ...

    async def record_run(self, job_name: str, at: datetime, result: Any) -> None: ...


class InMemoryJobStateStore:
    def __init__(self, last_runs: dict[str, datetime] | None = None) -> None:
        self.last_runs: dict[str, datetime] = dict(last_runs or {})
        self.results: dict[str, Any] = {}

    async def get_last_run(self, job_name: str) -> datetime | None:
        return self.last_runs.get(job_name)

    async def record_run(self, job_name: str, at: datetime, result: Any) -> None:
        self.last_runs[job_name] = at
        self.results[job_name] = result


class SqlJobStateStore:
    """Markers in the ``cron_runs`` table, written in their own short transactions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_last_run(self, job_name: str) -> datetime | None:
        async with self._session_factory() as db:
            result = await db.execute(select(CronRun.last_run_at).where(CronRun.job_name == job_name))
            return result.scalar_one_or_none()

    async def record_run(self, job_name: str, at: datetime, result: Any) -> None:
        async with self._session_factory() as db:
            stmt = upsert_insert(db, CronRun).values(job_name=job_name, last_run_at=at, result=result)
            stmt = stmt.on_conflict_do_update(
                index_elements=["job_name"],
                set_={"last_run_at": stmt.excluded.last_run_at, "result": stmt.excluded.result},
            )
            await db.execute(stmt)
            await db.commit()


@dataclass(frozen=True)
class JobSpec:
    name: str
    run: Callable[[], Awaitable[Any]]
    min_interval_hours: float | None = None
    # Local hour before which the job is not due
    earliest_hour: int | None = None


@dataclass
class JobOutcome:
    name: str
    status: str  # success | skipped | failed
    duration_ms: int | None = None
    result: Any = None
    reason: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        if self.status == "success":
            return {"success": True, "duration_ms": self.duration_ms, "result": self.result}
        if self.status == "skipped":
            return {"skipped": True, "reason": self.reason}
        return {"success": False, "error": self.error}


@dataclass
class JobScheduler:
    store: JobStateStore
    offset_minutes: int = 330
    clock: Callable[[], datetime] = field(default=utc_now)

    async def skip_reason(self, job: JobSpec, now: datetime) -> str | None:
        """Why ``job`` is not due at ``now``, or None if it should run."""
        if job.earliest_hour is not None and local_hour(now, self.offset_minutes) < job.earliest_hour:
            return f"Not before {job.earliest_hour:02d}:00 local time"
        if job.min_interval_hours is None:
            return None
        last_run = await self.store.get_last_run(job.name)
        if last_run is None:
            return None
        elapsed_hours = (now - last_run).total_seconds() / 3600
        if elapsed_hours < job.min_interval_hours:
            return "Too soon since last run"
        return None

    async def run_job(self, job: JobSpec) -> JobOutcome:
        now = self.clock()
        with job_context(job.name, uuid.uuid4().hex[:12]):
            reason = await self.skip_reason(job, now)
            if reason is not None:
                logger.info("job_skipped", job=job.name, status="skipped", reason=reason)
                return JobOutcome(job.name, "skipped", reason=reason)

            started = time.perf_counter()
            try:
                result = await job.run()
            except Exception as exc:
                logger.exception("job_failed", job=job.name, status="failed")
                return JobOutcome(job.name, "failed", error=str(exc) or type(exc).__name__)
            duration_ms = int((time.perf_counter() - started) * 1000)

            try:
                await self.store.record_run(job.name, now, result)
            except Exception:
                # Job work is done; the next pass will simply run it again
                logger.exception("job_marker_failed", job=job.name)

            logger.info("job_finished", job=job.name, status="success", duration_ms=duration_ms)
            return JobOutcome(job.name, "success", duration_ms=duration_ms, result=result)

    async def run(self, jobs: Sequence[JobSpec], only: Iterable[str] | None = None) -> dict[str, JobOutcome]:
        """Run ``jobs`` in order (or the named subset). One job's failure never stops the rest."""
        selected = set(only) if only is not None else None
        outcomes: dict[str, JobOutcome] = {}
        for job in jobs:
            if selected is not None and job.name not in selected:
                continue
            outcomes[job.name] = await self.run_job(job)
        return outcomes
