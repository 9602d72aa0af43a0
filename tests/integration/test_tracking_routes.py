import pytest
from fastapi.testclient import TestClient

from lead_engine.main import create_app
from lead_engine.models.domain.contractor_domain import PipelineStage
from lead_engine.pipeline.state_machine import PipelineEvent
from lead_engine.services.pipeline_service import ContractorNotFoundError, TransitionResult
from lead_engine.services.tracking_service import TRACKING_PIXEL

CONTRACTOR_ID = "0b6d6c9e-4b3f-4d59-9c55-6b0d1c2f0a11"


class BrokenPipeline:
    async def apply(self, *args, **kwargs):
        raise RuntimeError("database unavailable")

    async def signup(self, **kwargs):
        raise ContractorNotFoundError("No contractor with email nobody@example.com")

    async def unsubscribe(self, **kwargs):
        raise RuntimeError("database unavailable")


class RecordingPipeline:
    def __init__(self):
        self.calls = []

    async def apply(self, contractor_id, event, message_id=None):
        self.calls.append((event, contractor_id, message_id))
        return TransitionResult(contractor_id=contractor_id, event=event)

    async def signup(self, **kwargs):
        self.calls.append((PipelineEvent.SIGNUP, kwargs))
        return TransitionResult(
            contractor_id=kwargs["contractor_id"] or CONTRACTOR_ID,
            event=PipelineEvent.SIGNUP,
            previous_stage=PipelineStage.HOT,
            stage=PipelineStage.CONVERTED,
            score=100,
            offer_code_redeemed=True,
        )


@pytest.fixture
def client():
    return TestClient(create_app(use_lifespan=False))


@pytest.fixture
def broken(monkeypatch):
    monkeypatch.setattr("lead_engine.services.tracking_service.pipeline_service", BrokenPipeline())


@pytest.fixture
def recording(monkeypatch):
    pipeline = RecordingPipeline()
    monkeypatch.setattr("lead_engine.services.tracking_service.pipeline_service", pipeline)
    return pipeline


def test_pixel_is_served_even_when_processing_fails(client, broken):
    response = client.get("/track/open", params={"contractor_id": CONTRACTOR_ID, "message_id": "m1"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/gif"
    assert response.content == TRACKING_PIXEL
    assert "no-store" in response.headers["cache-control"]


def test_click_redirects_even_when_processing_fails(client, broken):
    response = client.get(
        "/track/click",
        params={"contractor_id": CONTRACTOR_ID, "url": "https://example.com/guide"},
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == "https://example.com/guide"


def test_click_with_unsafe_target_lands_on_site(client, recording, monkeypatch):
    monkeypatch.setattr("lead_engine.services.tracking_service.settings.SITE_URL", "https://site.example.com")

    response = client.get(
        "/track/click",
        params={"contractor_id": CONTRACTOR_ID, "url": "javascript:alert(1)"},
        follow_redirects=False,
    )

    assert response.headers["location"] == "https://site.example.com"
    assert recording.calls == [(PipelineEvent.CLICK, CONTRACTOR_ID, None)]


def test_open_event_is_forwarded(client, recording):
    message_id = "5c1f3b7e-8d0a-4f4e-9a57-2f6c0e9b1d22"

    client.get("/track/open", params={"contractor_id": CONTRACTOR_ID, "message_id": message_id})

    assert recording.calls == [(PipelineEvent.OPEN, CONTRACTOR_ID, message_id)]


def test_unsubscribe_page_always_renders(client, broken):
    response = client.get("/track/unsubscribe", params={"contractor_id": CONTRACTOR_ID})

    assert response.status_code == 200
    assert "You have been unsubscribed" in response.text


def test_signup_is_accepted_and_applied_after_the_response(client, recording):
    response = client.post(
        "/track/signup", json={"contractor_id": CONTRACTOR_ID, "promo_code": "govcon50"}
    )

    assert response.status_code == 202
    assert response.json() == {"status": "accepted"}
    event, kwargs = recording.calls[0]
    assert event is PipelineEvent.SIGNUP
    assert kwargs["contractor_id"] == CONTRACTOR_ID
    assert kwargs["offer_code"] == "govcon50"


def test_signup_for_unknown_contractor_is_accepted(client, broken):
    response = client.post("/track/signup", json={"email": "nobody@example.com"})

    assert response.status_code == 202
    assert response.json() == {"status": "accepted"}


def test_signup_requires_an_identifier(client):
    response = client.post("/track/signup", json={"promo_code": "GOVCON50"})

    assert response.status_code == 422


def test_unsubscribe_post_is_accepted_even_when_processing_fails(client, broken):
    response = client.post("/track/unsubscribe", json={"contractor_id": CONTRACTOR_ID})

    assert response.status_code == 202
    assert response.json() == {"status": "accepted"}
