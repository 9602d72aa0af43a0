import asyncio

import pytest

from lead_engine.jobs import worker
from lead_engine.jobs.scheduler import ScheduledJob


@pytest.fixture(autouse=True)
def no_database(monkeypatch):
    async def noop():
        return None

    monkeypatch.setattr(worker.db_pool, "initialize", noop)
    monkeypatch.setattr(worker.db_pool, "close", noop)


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job(stop_event):
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


@pytest.mark.asyncio
async def test_run_once_runs_a_single_iteration(monkeypatch):
    runs = []

    async def action(stop_event):
        runs.append(stop_event.is_set())
        return {"ok": True}

    job = ScheduledJob("dummy_sync", action, interval_seconds=3600)
    monkeypatch.setitem(worker.SCHEDULED_JOBS, "dummy_sync", job)
    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy_sync", job.start)

    await worker.run_worker("dummy_sync", run_once=True)

    assert runs == [False]
    assert job.get_job_status()["last_result"] == {"ok": True}


@pytest.mark.asyncio
async def test_scheduler_stops_when_stop_event_is_set():
    stop_event = asyncio.Event()
    runs = []

    async def action(event):
        runs.append(1)
        event.set()

    job = ScheduledJob("loop", action, interval_seconds=3600)

    await asyncio.wait_for(job.start(stop_event), timeout=1)

    assert runs == [1]
    assert job.get_job_status()["runs"] == 1


@pytest.mark.asyncio
async def test_scheduler_backs_off_after_a_failure():
    stop_event = asyncio.Event()
    attempts = []

    async def action(event):
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("registry down")
        event.set()

    job = ScheduledJob("flaky", action, interval_seconds=3600, error_backoff_seconds=0.01)

    await asyncio.wait_for(job.start(stop_event), timeout=1)

    assert len(attempts) == 2
    assert job.failures == 1


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped():
    release = asyncio.Event()

    async def action(event):
        await release.wait()
        return {"done": True}

    job = ScheduledJob("slow", action, interval_seconds=3600)
    first = asyncio.create_task(job.run_once())
    await asyncio.sleep(0)

    skipped = await job.run_once()
    release.set()

    assert skipped == {"skipped": True, "reason": "already_running"}
    assert await first == {"done": True}
