"""Standalone scheduler process running the periodic batch match sweep."""
from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from filelock import FileLock

from plansync.config import get_settings
from plansync.database import run_migrations
from plansync.jobs.matching import batch_match_activities_job
from plansync.logging_config import configure_logging


logger = logging.getLogger("scheduler")


def acquire_lock(lock_path: Path) -> FileLock:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(lock_path))
    lock.acquire(timeout=0)
    return lock


def perform_batch_match(plan_id: int | None = None) -> Dict[str, int]:
    """Run one batch match sweep and return its counters."""
    return batch_match_activities_job(plan_id=plan_id)


async def run_match_job(plan_id: int | None = None) -> Dict[str, int] | None:
    start = datetime.now(timezone.utc)
    logger.info("Batch match job started")

    try:
        summary = await asyncio.to_thread(perform_batch_match, plan_id)
    except Exception:
        logger.exception("Batch match sweep failed")
        return None

    elapsed = (datetime.now(timezone.utc) - start).total_seconds()
    logger.info(
        "Batch match job finished in %.2fs | matched=%d | unmatched=%d | failed=%d",
        elapsed,
        summary["matched"],
        summary["unmatched"],
        summary["failed"],
    )
    return summary


async def main(run_now: bool, plan_id: int | None = None) -> None:
    configure_logging()
    settings = get_settings()
    run_migrations()

    scheduler_log = settings.log_dir / "scheduler.log"
    if not any(isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", "") == str(scheduler_log) for h in logger.handlers):
        handler = logging.FileHandler(scheduler_log, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        logger.addHandler(handler)

    lock_path = settings.scheduler_lock_file
    lock = acquire_lock(lock_path)
    logger.info("Acquired scheduler lock at %s", lock_path)
    try:
        if run_now:
            await run_match_job(plan_id)
            return

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            run_match_job,
            "interval",
            minutes=settings.scheduler_interval_minutes,
            kwargs={"plan_id": plan_id},
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()

        logger.info(
            "Scheduler running (every %d min). Press Ctrl+C to exit.",
            settings.scheduler_interval_minutes,
        )
        await asyncio.Event().wait()
    finally:
        lock.release()
        logger.info("Released scheduler lock at %s", lock_path)
        if lock_path.exists():
            lock_path.unlink()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run scheduler process")
    parser.add_argument("--run-now", action="store_true", help="Execute job immediately and exit")
    parser.add_argument("--plan-id", type=int, help="Restrict candidate workouts to this training plan")
    args = parser.parse_args()

    try:
        asyncio.run(main(run_now=args.run_now, plan_id=args.plan_id))
    except TimeoutError:
        logger.warning("Scheduler already running; exiting.")
