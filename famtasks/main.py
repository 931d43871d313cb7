"""famtasks - family task lifecycle, recurrence and reminder engine."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from famtasks.core.db_client import close_connection, init_db
from famtasks.core.logging import configure_logfire, instrument_fastapi
from famtasks.core.redis_client import redis_client
from famtasks.core.scheduler import MATERIALIZE_JOB, REMINDER_JOB, start_scheduler, stop_scheduler
from famtasks.core.scheduler_tracker import job_tracker
from famtasks.interface.task_router import register_error_handlers
from famtasks.interface.task_router import router as task_router
from famtasks.services.runtime import TaskRuntime, build_runtime


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Log whether the optional Redis backend is reachable; never fails startup."""
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    if await redis_client.ping():
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


def create_app(runtime: TaskRuntime | None = None, *, run_scheduler: bool = True) -> FastAPI:
    """Build the FastAPI app.

    Passing ``runtime`` skips database initialization and runtime wiring, which
    is how tests inject in-memory collaborators.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logfire()
        if runtime is None:
            await init_db()
            logger.info("Database initialized")
            await check_redis_connectivity()
            app.state.runtime = build_runtime()

        if run_scheduler:
            start_scheduler(app.state.runtime)
        yield
        if run_scheduler:
            stop_scheduler()
        if runtime is None:
            await close_connection()
            await redis_client.close()

    app = FastAPI(
        title="famtasks",
        description="Family task lifecycle, recurrence and reminder engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    instrument_fastapi(app)
    register_error_handlers(app)
    app.include_router(task_router)

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(content={"status": "healthy"}, status_code=200)

    @app.get("/health/scheduler")
    async def scheduler_health_check() -> JSONResponse:
        """Scheduler health check endpoint with job statuses."""
        job_statuses = {name: await job_tracker.get_job_status(name) for name in (REMINDER_JOB, MATERIALIZE_JOB)}
        dlq = job_tracker.get_dead_letter_queue()

        has_failures = any(job["consecutive_failures"] > 0 for job in job_statuses.values())
        overall_status = "degraded" if has_failures else "healthy"
        if dlq:
            overall_status = "critical"

        return JSONResponse(
            content={
                "status": overall_status,
                "jobs": job_statuses,
                "dead_letter_queue_size": len(dlq),
                "dead_letter_queue": dlq,
                "redis": redis_client.get_health_status(),
            },
            status_code=200 if overall_status == "healthy" else 503,
        )

    return app


app = create_app()
