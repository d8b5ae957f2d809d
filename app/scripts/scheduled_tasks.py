"""
Scheduled Tasks for the processing queue

Drains queued event-formation and context-inference work on an interval.
Uses APScheduler for in-process scheduling. With several API workers only one
should run the scheduler (enable_scheduler); claims are conditional updates so
an overlap never runs a task twice at once.
"""

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.services.task_queue import get_task_worker

logger = logging.getLogger("memory_graph.scheduler")

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def run_processing_queue():
    """Claim and run due processing tasks."""
    try:
        counts = await get_task_worker().process_pending_tasks()
        if counts:
            logger.info(f"Processing queue drained: {counts}")
    except Exception as e:
        logger.error(f"Processing queue run failed: {e}")


def setup_scheduler() -> AsyncIOScheduler:
    """Configure and return the scheduler with all jobs."""
    global scheduler

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_processing_queue,
        trigger=IntervalTrigger(seconds=settings.task_poll_interval_seconds),
        id="processing_queue",
        name="Event formation and context inference queue",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    logger.info(f"Scheduler configured: processing queue every {settings.task_poll_interval_seconds}s")
    return scheduler


def start_scheduler():
    """Start the scheduler if not already running."""
    global scheduler

    if scheduler is None:
        scheduler = setup_scheduler()

    if not scheduler.running:
        scheduler.start()
        logger.info("Processing queue scheduler started")


def stop_scheduler():
    """Stop the scheduler if running."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("Processing queue scheduler stopped")


# Drain the queue once, manually
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    async def main():
        print("Draining processing queue...")
        await run_processing_queue()
        print("Done!")

    asyncio.run(main())
