"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the appropriate scheduler:

    python -m lead_engine.jobs.worker contractor_sync
    python -m lead_engine.jobs.worker daily_sweeps --once
    WORKER_JOB=opportunity_sync python -m lead_engine.jobs.worker

SIGINT/SIGTERM set the shared stop event; a running sync finishes the code
it is on, writes what it fetched and exits.
"""

import asyncio
import os
import signal
import sys
from collections.abc import Awaitable, Callable

from lead_engine.config import settings
from lead_engine.db.helpers import apply_schema
from lead_engine.db.pool import db_pool
from lead_engine.infrastructure.observability.logging import get_logger, setup_logging
from lead_engine.jobs.scheduler import ScheduledJob
from lead_engine.jobs.sweep_job import daily_sweep_job
from lead_engine.jobs.sync_jobs import contractor_sync_job, opportunity_sync_job

logger = get_logger(__name__)

JobCoroutine = Callable[[asyncio.Event], Awaitable[object]]


async def run_migrations(stop_event: asyncio.Event) -> None:
    await apply_schema()


SCHEDULED_JOBS: dict[str, ScheduledJob] = {
    "contractor_sync": contractor_sync_job,
    "opportunity_sync": opportunity_sync_job,
    "daily_sweeps": daily_sweep_job,
}

JOB_REGISTRY: dict[str, JobCoroutine] = {
    **{name: job.start for name, job in SCHEDULED_JOBS.items()},
    "migrate": run_migrations,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if args:
        return args[0].strip().lower()
    return os.getenv("WORKER_JOB", "daily_sweeps").strip().lower()


def _resolve_run_once() -> bool:
    return "--once" in sys.argv[1:] or os.getenv("WORKER_RUN_ONCE", "").lower() in ("1", "true", "yes")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform/loop; Ctrl-C still raises KeyboardInterrupt
            pass


async def run_worker(
    job_name: str | None = None, *, run_once: bool = False, stop_event: asyncio.Event | None = None
) -> None:
    """Run the requested background job with the database pool open."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    stop_event = stop_event or asyncio.Event()
    _install_signal_handlers(stop_event)

    logger.info("Starting background worker", job=name, run_once=run_once)
    await db_pool.initialize()
    try:
        if run_once and name in SCHEDULED_JOBS:
            result = await SCHEDULED_JOBS[name].run_once(stop_event)
            logger.info("Worker single run finished", job=name, result=result)
        else:
            await JOB_REGISTRY[name](stop_event)
    finally:
        await db_pool.close()
        logger.info("Background worker stopped", job=name)


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    asyncio.run(run_worker(_resolve_job_name(), run_once=_resolve_run_once()))


if __name__ == "__main__":
    main()
