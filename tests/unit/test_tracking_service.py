import pytest

from lead_engine.db.helpers import DatabaseError
from lead_engine.models.domain.contractor_domain import PipelineStage
from lead_engine.pipeline.state_machine import PipelineEvent
from lead_engine.services.pipeline_service import PipelineService
from lead_engine.services.tracking_service import is_uuid, process_event, safe_redirect_url
from tests.fakes import make_contractor


@pytest.fixture
def service(contractors, activities, email_logs, offer_codes):
    return PipelineService(contractors, activities, email_logs, offer_codes)


def test_safe_redirect_url(monkeypatch):
    monkeypatch.setattr("lead_engine.services.tracking_service.settings.SITE_URL", "https://site.example.com")

    assert safe_redirect_url("https://example.com/guide") == "https://example.com/guide"
    assert safe_redirect_url("javascript:alert(1)") == "https://site.example.com"
    assert safe_redirect_url("//evil.example.com") == "https://site.example.com"
    assert safe_redirect_url(None) == "https://site.example.com"


def test_is_uuid():
    assert is_uuid("0b6d6c9e-4b3f-4d59-9c55-6b0d1c2f0a11") is True
    assert is_uuid("1 OR 1=1") is False
    assert is_uuid(None) is False


@pytest.mark.asyncio
async def test_open_event_is_applied(service, contractors):
    contractor = contractors.add(make_contractor())

    result = await process_event(PipelineEvent.OPEN, contractor.id, service=service)

    assert result.stage is PipelineStage.CONTACTED


@pytest.mark.asyncio
async def test_malformed_ids_are_rejected_or_dropped(service, contractors):
    contractor = contractors.add(make_contractor())

    assert await process_event(PipelineEvent.CLICK, "not-a-uuid", service=service) is None
    result = await process_event(PipelineEvent.CLICK, contractor.id, message_id="bogus", service=service)
    assert result.stage is PipelineStage.HOT


@pytest.mark.asyncio
async def test_unknown_contractor_returns_none(service):
    result = await process_event(PipelineEvent.OPEN, "0b6d6c9e-4b3f-4d59-9c55-6b0d1c2f0a11", service=service)

    assert result is None


@pytest.mark.asyncio
async def test_signup_by_email(service, contractors):
    contractor = contractors.add(make_contractor(email="owner@firm.com"))

    result = await process_event(PipelineEvent.SIGNUP, None, email="owner@firm.com", service=service)

    assert result.contractor_id == contractor.id
    assert result.stage is PipelineStage.CONVERTED


@pytest.mark.asyncio
async def test_processing_failure_never_raises(service, contractors):
    contractor = contractors.add(make_contractor())
    contractors.fail_transitions = 5

    assert await process_event(PipelineEvent.OPEN, contractor.id, service=service) is None


@pytest.mark.asyncio
async def test_transient_database_error_is_retried_once(monkeypatch, contractors):
    contractor = contractors.add(make_contractor())
    calls = []

    class FlakyService:
        async def apply(self, contractor_id, event, message_id=None):
            calls.append(contractor_id)
            raise DatabaseError("connection reset", operation="update")

    async def no_sleep(seconds):
        return None

    monkeypatch.setattr("lead_engine.db.helpers.asyncio.sleep", no_sleep)

    result = await process_event(PipelineEvent.CLICK, contractor.id, service=FlakyService())

    assert result is None
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_unsubscribe_resignup_unsubscribe_ends_unsubscribed(service, contractors):
    contractor = contractors.add(make_contractor(email="owner@firm.com"))

    await process_event(PipelineEvent.UNSUBSCRIBE, contractor.id, service=service)
    await process_event(PipelineEvent.SIGNUP, None, email="owner@firm.com", service=service)
    result = await process_event(PipelineEvent.UNSUBSCRIBE, None, email="owner@firm.com", service=service)

    assert result.stage is PipelineStage.UNSUBSCRIBED
    assert (await contractors.get(contractor.id)).pipeline_stage is PipelineStage.UNSUBSCRIBED
