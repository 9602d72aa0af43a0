from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient

from lead_engine.errors import ConfigurationError
from lead_engine.main import create_app
from lead_engine.models.domain.campaign_domain import CampaignType, FollowUpTask, TaskStatus
from lead_engine.outreach.messages import TemplateRenderError
from lead_engine.services.outreach_dispatcher import DispatchSummary

CONTRACTOR_ID = "0b6d6c9e-4b3f-4d59-9c55-6b0d1c2f0a11"

PAYLOAD = {
    "selection": {"naics_prefix": "5415", "min_score": 50, "limit": 25},
    "template": {"subject": "Hi [Company Name]", "body": "<p>Hello [Contact Name]</p>", "name": "March"},
}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr("lead_engine.auth.verify.settings.JOB_TRIGGER_TOKEN", None)
    return TestClient(create_app(use_lifespan=False))


def stub_send(monkeypatch, outcome):
    calls = []

    async def fake(selection, template, *, schedule_followups=True, **kwargs):
        calls.append((selection, template, schedule_followups))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(
        "lead_engine.routes.campaigns.outreach_dispatcher.send_campaign", fake
    )
    return calls


def test_send_returns_summary(client, monkeypatch):
    summary = DispatchSummary(campaign_name="March", category=CampaignType.COLD, selected=3, sent=2, skipped=1)
    summary.skip_reasons["cooldown"] += 1
    calls = stub_send(monkeypatch, summary)

    response = client.post("/campaigns/send", json=PAYLOAD)

    assert response.status_code == 200
    assert response.json()["skip_reasons"] == {"cooldown": 1}
    selection, template, schedule_followups = calls[0]
    assert selection.naics_prefix == "5415"
    assert selection.limit == 25
    assert template.name == "March"
    assert schedule_followups is True


def test_invalid_template_is_422(client, monkeypatch):
    stub_send(monkeypatch, TemplateRenderError("unexpected '}'"))

    response = client.post("/campaigns/send", json=PAYLOAD)

    assert response.status_code == 422


def test_missing_provider_credentials_is_500(client, monkeypatch):
    stub_send(monkeypatch, ConfigurationError("EMAIL_PROVIDER_API_KEY is not configured"))

    response = client.post("/campaigns/send", json=PAYLOAD)

    assert response.status_code == 500
    assert response.json()["detail"]["error_kind"] == "configuration"


def test_batch_aborted_on_credentials_is_500(client, monkeypatch):
    summary = DispatchSummary(
        campaign_name="March",
        category=CampaignType.COLD,
        selected=3,
        failed=1,
        error="provider rejected credentials",
        error_kind="configuration",
    )
    stub_send(monkeypatch, summary)

    response = client.post("/campaigns/send", json=PAYLOAD)

    assert response.status_code == 500
    assert response.json()["failed"] == 1


def test_selection_limit_is_bounded(client, monkeypatch):
    stub_send(monkeypatch, DispatchSummary(campaign_name=None, category=CampaignType.COLD))
    payload = {**PAYLOAD, "selection": {"limit": 100000}}

    assert client.post("/campaigns/send", json=payload).status_code == 422


def test_schedule_followups(client, monkeypatch):
    calls = []

    async def fake(contractor_ids, campaign_name=None):
        calls.append((contractor_ids, campaign_name))
        return {"created": 1, "skipped": 0, "tasks": [], "not_found": []}

    monkeypatch.setattr("lead_engine.routes.campaigns.followup_service.schedule_for_ids", fake)

    response = client.post(
        "/campaigns/followups", json={"contractor_ids": [CONTRACTOR_ID], "campaign_name": "March"}
    )

    assert response.status_code == 200
    assert response.json()["created"] == 1
    assert calls == [([CONTRACTOR_ID], "March")]


def test_schedule_followups_rejects_bad_ids(client):
    response = client.post("/campaigns/followups", json={"contractor_ids": ["1 OR 1=1"]})

    assert response.status_code == 422


def test_complete_followup(client, monkeypatch):
    task = FollowUpTask(
        id="9f1c2d3e-4b5a-4c6d-8e7f-0a1b2c3d4e5f",
        contractor_id=CONTRACTOR_ID,
        label="Follow up: March",
        title="Follow up with Acme Federal Solutions",
        due_date=datetime(2026, 3, 13, tzinfo=UTC),
        status=TaskStatus.DONE,
    )

    async def fake(task_id):
        return task if task_id == task.id else None

    monkeypatch.setattr("lead_engine.routes.sweeps.followup_service.mark_done", fake)

    done = client.post(f"/followups/{task.id}/done")
    missing = client.post("/followups/00000000-0000-4000-8000-000000000000/done")

    assert done.status_code == 200
    assert done.json()["status"] == TaskStatus.DONE.value
    assert missing.status_code == 404


def test_daily_sweep(client, monkeypatch):
    async def fake():
        return {"overdue_followups": 2, "expired_trials": {"churned": 1}}

    monkeypatch.setattr("lead_engine.routes.sweeps.sweep_service.run_daily", fake)

    response = client.post("/sweeps/daily")

    assert response.status_code == 200
    assert response.json()["overdue_followups"] == 2
