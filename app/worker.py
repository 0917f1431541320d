"""Background worker process.

RUN:  python -m app.worker

The API server answers requests; this process runs the periodic jobs, so
a slow leaderboard rebuild never competes with request latency.  Same
image, different command:

  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

Run exactly one worker per deployment (or RUN_SCHEDULER=true on exactly
one API instance).  Two schedulers are harmless, since every run rewrites
the same snapshots, but they waste work.
"""

from __future__ import annotations

import asyncio
import logging

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.services.leaderboard import leaderboard_builder
from app.services.scheduler import PeriodicScheduler

logger = logging.getLogger("worker")


def build_scheduler() -> PeriodicScheduler:
    scheduler = PeriodicScheduler()
    scheduler.on_schedule(
        SETTINGS.leaderboard_interval_seconds,
        leaderboard_builder.run,
        name="leaderboard_recompute",
        run_immediately=True,
    )
    return scheduler


async def run_worker() -> None:
    scheduler = build_scheduler()
    async with lifespan_db():
        async with lifespan_redis():
            scheduler.start()
            logger.info(
                "Worker started, leaderboard interval=%ds",
                SETTINGS.leaderboard_interval_seconds,
            )
            try:
                await asyncio.Event().wait()
            finally:
                await scheduler.stop()


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Worker stopped")
