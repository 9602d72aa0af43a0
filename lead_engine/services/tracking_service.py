"""
Tracking ingest - the state-mutation half of the tracking endpoints.

Routes answer the recipient first (pixel, redirect, page) and schedule
process_event() as a background task. process_event() retries transient
database failures once and logs everything else; nothing raised here can
reach a response that has already been sent.
"""

import base64
import uuid
from urllib.parse import urlparse

from lead_engine.config import settings
from lead_engine.db.helpers import with_db_retry
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.pipeline.state_machine import PipelineEvent
from lead_engine.services.pipeline_service import (
    ContractorNotFoundError,
    PipelineService,
    TransitionResult,
    pipeline_service,
)

logger = get_logger(__name__)

# 1x1 transparent GIF
TRACKING_PIXEL = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

PIXEL_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


def is_uuid(value: str | None) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def safe_redirect_url(url: str | None) -> str:
    """Only absolute http(s) URLs are followed; anything else lands on the site."""
    if url:
        parsed = urlparse(url.strip())
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return url.strip()
    return settings.SITE_URL


async def process_event(
    event: PipelineEvent,
    contractor_id: str | None,
    *,
    message_id: str | None = None,
    email: str | None = None,
    offer_code: str | None = None,
    service: PipelineService | None = None,
) -> TransitionResult | None:
    """Apply one tracking event. Never raises."""
    service = service or pipeline_service

    @with_db_retry(max_retries=1)
    async def apply() -> TransitionResult:
        if event is PipelineEvent.SIGNUP:
            return await service.signup(
                contractor_id=contractor_id, email=email, offer_code=offer_code, message_id=message_id
            )
        if event is PipelineEvent.UNSUBSCRIBE:
            return await service.unsubscribe(contractor_id=contractor_id, email=email, message_id=message_id)
        return await service.apply(contractor_id, event, message_id=message_id)

    if not contractor_id and not email:
        logger.warning("Tracking event without a contractor", tracking_event=event.value, message_id=message_id)
        return None
    if contractor_id and not is_uuid(contractor_id):
        logger.warning(
            "Tracking event with malformed contractor id",
            tracking_event=event.value,
            contractor_id=contractor_id,
        )
        return None
    if message_id and not is_uuid(message_id):
        message_id = None

    try:
        result = await apply()
    except ContractorNotFoundError as e:
        logger.warning("Tracking event for unknown contractor", tracking_event=event.value, error=str(e))
        return None
    except Exception as e:
        logger.error(
            "Tracking event processing failed",
            tracking_event=event.value,
            contractor_id=contractor_id,
            message_id=message_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return None

    logger.info(
        "Tracking event processed",
        tracking_event=event.value,
        contractor_id=result.contractor_id,
        duplicate=result.duplicate,
        stage=result.stage.value if result.stage else None,
    )
    return result
