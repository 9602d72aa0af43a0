"""
Interval scheduler shared by the background jobs.

Each job is a ScheduledJob: run_once() executes a single iteration (skipped
if one is already in flight) and start() loops on the configured interval
until the stop event is set. An iteration that raises is logged and the loop
backs off before trying again; it never takes the worker down.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from lead_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ERROR_BACKOFF_SECONDS = 60


class ScheduledJob:
    def __init__(
        self,
        name: str,
        action: Callable[[asyncio.Event], Awaitable[Any]],
        interval_seconds: float,
        *,
        error_backoff_seconds: float = ERROR_BACKOFF_SECONDS,
    ):
        self.name = name
        self.action = action
        self.interval_seconds = interval_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.last_result: dict | None = None
        self.runs = 0
        self.failures = 0

    async def run_once(self, stop_event: asyncio.Event | None = None) -> dict:
        """Run a single iteration of the job."""
        if self.is_running:
            logger.warning("Job already running, skipping this iteration", job=self.name)
            return {"skipped": True, "reason": "already_running"}

        stop_event = stop_event or asyncio.Event()
        started = time.monotonic()
        try:
            self.is_running = True
            logger.info("Starting scheduled job", job=self.name)
            result = await self.action(stop_event)
            self.runs += 1
            self.last_result = result if isinstance(result, dict) else {"result": result}
            return self.last_result
        except Exception:
            self.failures += 1
            raise
        finally:
            self.last_run_time = datetime.now(UTC)
            self.is_running = False
            logger.info(
                "Scheduled job iteration finished",
                job=self.name,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )

    async def start(self, stop_event: asyncio.Event | None = None) -> None:
        """Loop until stop_event is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info("Starting job scheduler", job=self.name, interval_seconds=self.interval_seconds)

        while not stop_event.is_set():
            try:
                await self.run_once(stop_event)
                delay = self.interval_seconds
            except Exception as e:
                logger.error(
                    "Error in job scheduler", job=self.name, error=str(e), error_type=type(e).__name__
                )
                # Back off so a persistent failure does not become a tight loop
                delay = self.error_backoff_seconds

            if await _wait(stop_event, delay):
                break

        logger.info("Job scheduler stopped", job=self.name)

    def get_job_status(self) -> dict:
        return {
            "job": self.name,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "failures": self.failures,
            "last_result": self.last_result,
        }


async def _wait(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to seconds; True if the stop event fired meanwhile."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except TimeoutError:
        return False
    return True
