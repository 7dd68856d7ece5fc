"""Periodic trigger: one pass over every gamification job.

Usage:
    python -m coarc.workers.cron_runner [job ...]     # one pass, prints outcome JSON
    python -m coarc.workers.cron_runner seed-badges   # upsert the default badge catalog
    arq coarc.workers.cron_runner.CronWorkerSettings  # pass every 10 minutes

Jobs run in a fixed order, each in its own session. Interval-guarded jobs
are deduplicated through the ``cron_runs`` table; the rest run on every
pass and rely on their own idempotency.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coarc.config import Settings, get_settings
from coarc.database import close_db, get_session_factory, init_db
from coarc.duels.duel_service import check_duels
from coarc.gamification.digest import send_weekly_digest
from coarc.gamification.rankings import compute_rankings
from coarc.gamification.seed import seed_badges
from coarc.gamification.streak_service import process_all_streaks, send_streak_warnings
from coarc.jobs.scheduler import JobOutcome, JobScheduler, JobSpec, SqlJobStateStore
from coarc.log_setup import setup_logging
from coarc.notifications.service import Notifier
from coarc.platforms.codeforces import CodeforcesClient, CodeforcesSource
from coarc.platforms.leetcode import LcStatsSource, LeetCodeClient
from coarc.redis_client import close_redis, get_redis, init_redis
from coarc.workers.sync_worker import sync_codeforces, sync_leetcode

logger = logging.getLogger(__name__)

JobBody = Callable[[AsyncSession, Notifier], Awaitable[Any]]


def build_jobs(
    session_factory: async_sessionmaker[AsyncSession],
    redis: object | None,
    source: CodeforcesSource,
    settings: Settings,
    lc_source: LcStatsSource | None = None,
) -> list[JobSpec]:
    """All registered jobs in run order. ``sync-lc`` needs ``lc_source``."""

    def in_session(body: JobBody) -> Callable[[], Awaitable[Any]]:
        async def run() -> Any:
            async with session_factory() as db:
                notifier = Notifier(db, redis)
                try:
                    return await body(db, notifier)
                finally:
                    await notifier.send_pending()
                    notifier.detach()
        return run

    intervals = settings.job_intervals
    jobs = [
        JobSpec(
            "sync-cf",
            in_session(lambda db, n: sync_codeforces(db, n, source, settings)),
            intervals.get("sync-cf"),
        ),
    ]
    if lc_source is not None:
        jobs.append(
            JobSpec(
                "sync-lc",
                in_session(lambda db, n: sync_leetcode(db, n, lc_source, settings)),
                intervals.get("sync-lc"),
            )
        )
    jobs += [
        JobSpec(
            "update-streaks",
            in_session(lambda db, n: process_all_streaks(db, n, settings)),
            intervals.get("update-streaks"),
        ),
        JobSpec(
            "streak-warnings",
            in_session(lambda db, n: send_streak_warnings(db, n, settings)),
            intervals.get("streak-warnings"),
            earliest_hour=settings.streak_warning_hour,
        ),
        JobSpec(
            "check-duels",
            in_session(lambda db, n: check_duels(db, n, source, settings)),
            intervals.get("check-duels"),
        ),
        JobSpec(
            "compute-rankings",
            in_session(lambda db, n: compute_rankings(db, n, settings)),
            intervals.get("compute-rankings"),
        ),
        JobSpec(
            "weekly-digest",
            in_session(lambda db, n: send_weekly_digest(db, n, settings)),
            intervals.get("weekly-digest"),
        ),
    ]
    return jobs


async def run_pass(
    session_factory: async_sessionmaker[AsyncSession],
    redis: object | None,
    source: CodeforcesSource,
    settings: Settings,
    only: list[str] | None = None,
    lc_source: LcStatsSource | None = None,
) -> dict[str, JobOutcome]:
    scheduler = JobScheduler(SqlJobStateStore(session_factory), offset_minutes=settings.timezone_offset_minutes)
    jobs = build_jobs(session_factory, redis, source, settings, lc_source)
    known = {job.name for job in jobs}
    for name in only or []:
        if name not in known:
            logger.warning("Unknown job %r ignored (known: %s)", name, ", ".join(sorted(known)))
    return await scheduler.run(jobs, only or None)


async def seed_catalog(session_factory: async_sessionmaker[AsyncSession]) -> int:
    """Upsert the default badge catalog. Returns 0 if seeding failed."""
    try:
        async with session_factory() as db:
            return await seed_badges(db)
    except Exception:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)
        return 0


# ---------------------------------------------------------------------------
# arq worker
# ---------------------------------------------------------------------------


async def cron_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB, push Redis and the platform clients on worker startup; seed badges."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    await seed_catalog(get_session_factory())
    ctx["codeforces"] = CodeforcesClient(settings.codeforces_api_url, settings.platform_timeout_seconds)
    ctx["leetcode"] = LeetCodeClient(settings.leetcode_graphql_url, settings.platform_timeout_seconds)
    logger.info("Cron worker started")


async def cron_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    for key in ("codeforces", "leetcode"):
        client = ctx.get(key)
        if client is not None:
            await client.close()
    await close_redis()
    await close_db()
    logger.info("Cron worker shut down")


async def run_cron_pass(ctx: dict) -> dict[str, Any]:  # type: ignore[type-arg]
    """Scheduled arq task: one scheduler pass over all jobs."""
    outcomes = await run_pass(
        get_session_factory(), get_redis(), ctx["codeforces"], get_settings(), lc_source=ctx["leetcode"]
    )
    return {name: outcome.as_dict() for name, outcome in outcomes.items()}


class CronWorkerSettings:
    """arq worker settings for the periodic trigger."""

    functions = [run_cron_pass]
    cron_jobs = [cron(run_cron_pass, minute=set(range(0, 60, 10)), timeout=540)]
    on_startup = cron_startup
    on_shutdown = cron_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 1
    job_timeout = 600  # duel polling sleeps between duels


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


async def _main(only: list[str]) -> dict[str, Any]:
    settings = get_settings()
    await init_db(settings.database_url)
    if only == ["seed-badges"]:
        try:
            return {"seed-badges": {"seeded": await seed_catalog(get_session_factory())}}
        finally:
            await close_db()

    await init_redis(settings.redis_url)
    cf = CodeforcesClient(settings.codeforces_api_url, settings.platform_timeout_seconds)
    lc = LeetCodeClient(settings.leetcode_graphql_url, settings.platform_timeout_seconds)
    try:
        outcomes = await run_pass(get_session_factory(), get_redis(), cf, settings, only, lc_source=lc)
        return {name: o.as_dict() for name, o in outcomes.items()}
    finally:
        await cf.close()
        await lc.close()
        await close_redis()
        await close_db()


def main(argv: list[str] | None = None) -> int:
    setup_logging(get_settings())
    only = list(sys.argv[1:] if argv is None else argv)
    results = asyncio.run(_main(only))
    print(json.dumps(results, indent=2, default=str))
    failed = any(isinstance(r, dict) and r.get("success") is False for r in results.values())
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
