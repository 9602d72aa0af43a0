import json

import httpx
import pytest

from lead_engine.errors import ConfigurationError
from lead_engine.services.email_provider import EmailProvider, EmailProviderError, OutboundEmail

EMAIL = OutboundEmail(
    to="owner@firm.com", subject="Hello", html="<p>Hi</p>", text="Hi", tags={"campaign_type": "cold"}
)


def provider(handler) -> EmailProvider:
    return EmailProvider(
        "re_test_key",
        "Outreach <outreach@example.com>",
        url="https://email.example.com/emails",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_send_returns_provider_message_id():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "msg_123"})

    async with provider(handler) as client:
        message_id = await client.send(EMAIL)

    assert message_id == "msg_123"
    assert seen["auth"] == "Bearer re_test_key"
    assert seen["body"]["to"] == ["owner@firm.com"]
    assert seen["body"]["tags"] == [{"name": "campaign_type", "value": "cold"}]


@pytest.mark.asyncio
async def test_rejected_credentials_are_a_configuration_error():
    async with provider(lambda request: httpx.Response(403)) as client:
        with pytest.raises(ConfigurationError):
            await client.send(EMAIL)


@pytest.mark.asyncio
@pytest.mark.parametrize("status,recoverable", [(429, True), (502, True), (422, False)])
async def test_error_status_recoverability(status, recoverable):
    async with provider(lambda request: httpx.Response(status, json={"message": "nope"})) as client:
        with pytest.raises(EmailProviderError) as exc_info:
            await client.send(EMAIL)

    assert exc_info.value.status_code == status
    assert exc_info.value.recoverable is recoverable
    assert "nope" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_error_is_recoverable():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    async with provider(handler) as client:
        with pytest.raises(EmailProviderError) as exc_info:
            await client.send(EMAIL)

    assert exc_info.value.recoverable is True


def test_missing_credentials_fail_fast(monkeypatch):
    monkeypatch.setattr("lead_engine.config.settings.EMAIL_PROVIDER_API_KEY", None)

    with pytest.raises(ConfigurationError):
        EmailProvider()
