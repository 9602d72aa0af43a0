"""
Scheduled registry syncs: weekly contractor ingest and daily opportunity
cache refresh. The worker's stop event is handed to the sync job, so a
shutdown ends the fetch between classification codes and the records already
fetched are still written.
"""

import asyncio

from lead_engine.config import settings
from lead_engine.jobs.scheduler import ScheduledJob
from lead_engine.services.sync_job import refresh_opportunities, sync_contractors


async def _contractor_sync(stop_event: asyncio.Event) -> dict:
    summary = await sync_contractors(stop_event=stop_event)
    return summary.to_dict()


async def _opportunity_sync(stop_event: asyncio.Event) -> dict:
    summary = await refresh_opportunities(stop_event=stop_event)
    return summary.to_dict()


contractor_sync_job = ScheduledJob(
    "contractor_sync", _contractor_sync, settings.CONTRACTOR_SYNC_INTERVAL_HOURS * 3600
)
opportunity_sync_job = ScheduledJob(
    "opportunity_sync", _opportunity_sync, settings.OPPORTUNITY_SYNC_INTERVAL_HOURS * 3600
)


async def start_contractor_sync_scheduler(stop_event: asyncio.Event | None = None) -> None:
    await contractor_sync_job.start(stop_event)


async def start_opportunity_sync_scheduler(stop_event: asyncio.Event | None = None) -> None:
    await opportunity_sync_job.start(stop_event)
