"""
Email provider client (Resend-compatible HTTP API).
Pure API client: one POST per message, no retries here. The dispatcher
decides whether a failure is worth a second attempt.
"""

from dataclasses import dataclass, field

import httpx

from lead_engine.config import settings
from lead_engine.errors import ConfigurationError
from lead_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EmailProviderError(Exception):
    """Custom exception for email provider errors."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


@dataclass(slots=True)
class OutboundEmail:
    to: str
    subject: str
    html: str
    text: str
    tags: dict[str, str] = field(default_factory=dict)


class EmailProvider:
    def __init__(
        self,
        api_key: str | None = None,
        from_address: str | None = None,
        *,
        url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        if api_key is None or from_address is None:
            configured_key, configured_from = settings.require_email_credentials()
            api_key = api_key or configured_key
            from_address = from_address or configured_from
        self.api_key = api_key
        self.from_address = from_address
        self.url = url or settings.EMAIL_PROVIDER_URL
        self.timeout = timeout or settings.EMAIL_TIMEOUT_SECONDS
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))

    async def __aenter__(self) -> "EmailProvider":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, email: OutboundEmail) -> str:
        """
        Send one message.

        Returns:
            str: provider message id

        Raises:
            ConfigurationError: provider rejected our credentials
            EmailProviderError: any other failure; recoverable for 429, 5xx and transport errors
        """
        payload = {
            "from": self.from_address,
            "to": [email.to],
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
            "tags": [{"name": name, "value": value} for name, value in email.tags.items()],
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            response = await self._client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise EmailProviderError(f"Email provider timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise EmailProviderError(f"Email provider unreachable: {type(e).__name__}") from e

        status = response.status_code
        if status in (401, 403):
            logger.error("Email provider rejected credentials", status_code=status)
            raise ConfigurationError(f"Email provider rejected credentials (HTTP {status})")

        if status >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            error_message = body.get("message") if isinstance(body, dict) else None
            error_message = error_message or response.text[:200]
            raise EmailProviderError(
                f"Email provider error (HTTP {status}): {error_message}",
                status_code=status,
                recoverable=status == 429 or status >= 500,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise EmailProviderError("Email provider returned a non-JSON body", status_code=status) from e
        message_id = data.get("id") if isinstance(data, dict) else None
        if not message_id:
            raise EmailProviderError("Email provider response missing message id", status_code=status, recoverable=False)

        logger.debug("Email accepted by provider", provider_message_id=message_id)
        return message_id
