"""
Daily sweeps: overdue follow-ups, trial-ending warnings, trial expiry.
"""

import asyncio

from lead_engine.config import settings
from lead_engine.jobs.scheduler import ScheduledJob
from lead_engine.services.sweep_service import sweep_service


async def _daily_sweeps(stop_event: asyncio.Event) -> dict:
    return await sweep_service.run_daily()


daily_sweep_job = ScheduledJob("daily_sweeps", _daily_sweeps, settings.SWEEP_INTERVAL_HOURS * 3600)


async def start_daily_sweep_scheduler(stop_event: asyncio.Event | None = None) -> None:
    await daily_sweep_job.start(stop_event)
