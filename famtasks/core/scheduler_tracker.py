"""Execution tracking for the scheduling loop's tick jobs."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from famtasks.core.config import Constants
from famtasks.core.redis_client import RedisClient, redis_client


logger = logging.getLogger(__name__)

# Consecutive failed runs before a job lands in the dead letter queue
DEAD_LETTER_THRESHOLD = 3


class JobTracker:
    """Track tick job runs, per-item failures and persistently failing jobs.

    Counters live in Redis when it is configured, so every scheduling loop
    reports into the same place; otherwise they are kept in process.
    """

    def __init__(self, client: RedisClient | None = None) -> None:
        self._client = client or redis_client
        self._memory_storage: dict[str, dict[str, Any]] = {}
        self._dead_letter_queue: deque[dict[str, str]] = deque(maxlen=Constants.TRACKER_DEAD_LETTER_QUEUE_MAXLEN)

    @staticmethod
    def _key(job_name: str, field: str) -> str:
        return f"famtasks:job:{job_name}:{field}"

    def _job(self, job_name: str) -> dict[str, Any]:
        return self._memory_storage.setdefault(job_name, {})

    async def record_job_start(self, job_name: str) -> None:
        now = datetime.now(UTC).isoformat()
        if self._client.is_available:
            await self._client.set(self._key(job_name, "current_run"), now, ttl_seconds=3600)
        else:
            self._job(job_name)["current_run"] = now

    async def record_job_success(self, job_name: str) -> None:
        now = datetime.now(UTC).isoformat()
        ttl = Constants.TRACKER_TTL_SECONDS

        if self._client.is_available:
            await self._client.set(self._key(job_name, "last_success"), now, ttl_seconds=ttl)
            await self._client.set(self._key(job_name, "consecutive_failures"), "0", ttl_seconds=ttl)
            await self._client.increment(self._key(job_name, "success_count"), ttl_seconds=ttl)
            await self._client.delete(self._key(job_name, "current_run"))
            return

        job = self._job(job_name)
        job["last_success"] = now
        job["consecutive_failures"] = 0
        job["success_count"] = job.get("success_count", 0) + 1
        job.pop("current_run", None)

    async def record_job_failure(self, job_name: str, error: str) -> int | None:
        """Record a failed run and return the number of consecutive failures."""
        now = datetime.now(UTC).isoformat()
        ttl = Constants.TRACKER_TTL_SECONDS

        if self._client.is_available:
            await self._client.set(self._key(job_name, "last_failure"), now, ttl_seconds=ttl)
            await self._client.set(self._key(job_name, "last_error"), error[:500], ttl_seconds=ttl)
            consecutive = await self._client.increment(self._key(job_name, "consecutive_failures"), ttl_seconds=ttl)
            await self._client.increment(self._key(job_name, "failure_count"), ttl_seconds=ttl)
            await self._client.delete(self._key(job_name, "current_run"))
            return consecutive

        job = self._job(job_name)
        job["last_failure"] = now
        job["last_error"] = error[:500]
        job["consecutive_failures"] = job.get("consecutive_failures", 0) + 1
        job["failure_count"] = job.get("failure_count", 0) + 1
        job.pop("current_run", None)
        return job["consecutive_failures"]

    async def record_item_failure(self, job_name: str, item_id: str, error: str) -> None:
        """Count a single task that failed inside an otherwise successful tick."""
        logger.warning("%s failed for %s: %s", job_name, item_id, error)
        if self._client.is_available:
            await self._client.increment(
                self._key(job_name, "item_failure_count"), ttl_seconds=Constants.TRACKER_TTL_SECONDS
            )
            await self._client.set(
                self._key(job_name, "last_item_error"),
                f"{item_id}: {error[:500]}",
                ttl_seconds=Constants.TRACKER_TTL_SECONDS,
            )
            return

        job = self._job(job_name)
        job["item_failure_count"] = job.get("item_failure_count", 0) + 1
        job["last_item_error"] = f"{item_id}: {error[:500]}"

    async def get_job_status(self, job_name: str) -> dict[str, Any]:
        if self._client.is_available:
            fields = [
                "last_success",
                "last_failure",
                "last_error",
                "consecutive_failures",
                "success_count",
                "failure_count",
                "item_failure_count",
                "last_item_error",
                "current_run",
            ]
            job = {field: await self._client.get(self._key(job_name, field)) for field in fields}
        else:
            job = self._memory_storage.get(job_name, {})

        return {
            "job_name": job_name,
            "last_success": job.get("last_success"),
            "last_failure": job.get("last_failure"),
            "last_error": job.get("last_error"),
            "consecutive_failures": int(job.get("consecutive_failures") or 0),
            "success_count": int(job.get("success_count") or 0),
            "failure_count": int(job.get("failure_count") or 0),
            "item_failure_count": int(job.get("item_failure_count") or 0),
            "last_item_error": job.get("last_item_error"),
            "currently_running": job.get("current_run") is not None,
        }

    async def add_to_dead_letter_queue(self, job_name: str, error: str, context: str) -> None:
        entry = {
            "job_name": job_name,
            "error": error,
            "context": context,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        self._dead_letter_queue.append(entry)
        logger.error("Job added to dead letter queue", extra=entry)

        if self._client.is_available:
            await self._client.set(
                f"famtasks:dlq:{job_name}:{entry['timestamp']}",
                f"{error} | {context}",
                ttl_seconds=Constants.TRACKER_TTL_SECONDS,
            )

    def get_dead_letter_queue(self) -> list[dict[str, str]]:
        return list(self._dead_letter_queue)


# Global job tracker instance
job_tracker = JobTracker()


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[None]],
    job_name: str,
    max_retries: int = Constants.JOB_MAX_RETRIES,
    base_delay: float = 2.0,
    tracker: JobTracker | None = None,
) -> None:
    """Execute a tick job, retrying with exponential backoff.

    Args:
        job_func: Async function to execute
        job_name: Name of the job for tracking
        max_retries: Maximum number of attempts
        base_delay: Base delay in seconds for exponential backoff
        tracker: Tracker to report into (default: the global job tracker)
    """
    tracker = tracker or job_tracker
    await tracker.record_job_start(job_name)

    last_error = None
    for attempt in range(max_retries):
        try:
            await job_func()
        except Exception as e:
            last_error = str(e)
            logger.exception("%s failed on attempt %d/%d", job_name, attempt + 1, max_retries)
            if attempt < max_retries - 1:
                delay = base_delay**attempt
                logger.info("Retrying %s in %.1fs", job_name, delay)
                await asyncio.sleep(delay)
            continue

        await tracker.record_job_success(job_name)
        logger.debug("%s completed successfully", job_name)
        return

    error_msg = f"Failed after {max_retries} attempts: {last_error}"
    consecutive_failures = await tracker.record_job_failure(job_name, error_msg)
    logger.error(
        "%s failed after all retry attempts",
        job_name,
        extra={"error": error_msg, "consecutive_failures": consecutive_failures},
    )

    if consecutive_failures and consecutive_failures >= DEAD_LETTER_THRESHOLD:
        await tracker.add_to_dead_letter_queue(
            job_name=job_name,
            error=last_error or "Unknown error",
            context=f"Failed {consecutive_failures} consecutive times",
        )
