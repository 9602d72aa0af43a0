from datetime import timedelta

import pytest

from lead_engine.models.domain.campaign_domain import TaskStatus
from lead_engine.services.followup_service import FollowUpService, followup_label
from tests.fakes import NOW, make_contractor


@pytest.fixture
def service(tasks, contractors):
    return FollowUpService(tasks, contractors, due_days=3, assignee="Admin")


def test_followup_label():
    assert followup_label("Spring IT push") == "Follow up: Spring IT push"
    assert followup_label(None) == "Follow up on outreach email"
    assert followup_label("   ") == "Follow up on outreach email"


@pytest.mark.asyncio
async def test_schedule_is_idempotent_per_label(service, tasks):
    contractor = make_contractor()

    assert await service.schedule(contractor, "Spring IT push", NOW) is True
    assert await service.schedule(contractor, "Spring IT push", NOW) is False
    assert await service.schedule(contractor, "Other campaign", NOW) is True

    open_tasks = await tasks.list_open(contractor.id)
    assert len(open_tasks) == 2
    assert open_tasks[0].due_date == NOW + timedelta(days=3)
    assert open_tasks[0].assignee == "Admin"


@pytest.mark.asyncio
async def test_completed_task_allows_a_new_one(service, tasks):
    contractor = make_contractor()
    await service.schedule(contractor, None, NOW)
    task = next(iter(tasks.rows.values()))

    await service.mark_done(task.id, NOW)

    assert await service.schedule(contractor, None, NOW) is True


@pytest.mark.asyncio
async def test_schedule_for_ids_reports_unknown_ids(service, contractors):
    known = contractors.add(make_contractor())
    missing = "7d1b6a5e-0000-4000-8000-000000000000"

    result = await service.schedule_for_ids([known.id, known.id, missing], "Q2", NOW)

    assert result == {"created": 1, "skipped": 0, "not_found": [missing]}


@pytest.mark.asyncio
async def test_mark_overdue_only_touches_pending_past_due(service, tasks):
    late, fresh = make_contractor(), make_contractor()
    await service.schedule(late, None, NOW - timedelta(days=5))
    await service.schedule(fresh, None, NOW)

    assert await service.mark_overdue(NOW) == 1
    assert await service.mark_overdue(NOW) == 0
    statuses = {t.contractor_id: t.status for t in tasks.rows.values()}
    assert statuses == {late.id: TaskStatus.OVERDUE, fresh.id: TaskStatus.PENDING}


@pytest.mark.asyncio
async def test_mark_done_unknown_task(service):
    assert await service.mark_done("missing", NOW) is None
