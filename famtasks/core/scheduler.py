"""Scheduling loop: periodic reminder and recurrence ticks on APScheduler."""

import logging
from datetime import UTC, datetime
from functools import partial

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from famtasks.core.config import settings
from famtasks.core.scheduler_tracker import job_tracker, retry_job_with_backoff
from famtasks.services.runtime import TaskRuntime


logger = logging.getLogger(__name__)

REMINDER_JOB = "reminder_tick"
MATERIALIZE_JOB = "materialize_tick"

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def run_reminder_tick(runtime: TaskRuntime) -> None:
    """Fire due reminders and count the tasks that failed along the way."""
    events = await runtime.reminders.fire(datetime.now(UTC))
    for task_id, error in runtime.reminders.last_tick_failures:
        await job_tracker.record_item_failure(REMINDER_JOB, task_id, error)
    logger.debug("Reminder tick fired %d reminders", len(events))


async def run_materialize_tick(runtime: TaskRuntime) -> None:
    created = await runtime.recurrence.materialize_due(datetime.now(UTC))
    logger.debug("Materialize tick created %d occurrences", len(created))


def start_scheduler(runtime: TaskRuntime) -> None:
    """Register the tick jobs and start the scheduler.

    This should be called during FastAPI app startup. Each job runs at most
    once at a time, so a slow tick never overlaps the next one.
    """
    logger.info("Starting scheduler")

    scheduler.add_job(
        retry_job_with_backoff,
        args=[partial(run_reminder_tick, runtime), REMINDER_JOB],
        trigger=IntervalTrigger(seconds=settings.reminder_tick_seconds),
        id=REMINDER_JOB,
        name="Fire Task Reminders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Scheduled reminder tick: every %ds", settings.reminder_tick_seconds)

    scheduler.add_job(
        retry_job_with_backoff,
        args=[partial(run_materialize_tick, runtime), MATERIALIZE_JOB],
        trigger=IntervalTrigger(seconds=settings.materialize_tick_seconds),
        id=MATERIALIZE_JOB,
        name="Materialize Recurring Tasks",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Scheduled materialize tick: every %ds", settings.materialize_tick_seconds)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    logger.info("Stopping scheduler")
    if scheduler.running:
        scheduler.shutdown(wait=True)
    logger.info("Scheduler stopped")
