"""
Engagement tracking endpoints.

The recipient always gets the expected answer (pixel, redirect, page) no
matter what happens to the state update. Every endpoint hands the update
to a background task, so the response never waits on the database. The
POST endpoints answer 202 once the request validates.
"""

from fastapi import APIRouter, BackgroundTasks, Query, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.api.tracking_request import SignupRequest, UnsubscribeRequest
from lead_engine.pipeline.state_machine import PipelineEvent
from lead_engine.services.tracking_service import (
    PIXEL_HEADERS,
    TRACKING_PIXEL,
    process_event,
    safe_redirect_url,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/track", tags=["tracking"])

ACCEPTED = {"status": "accepted"}

UNSUBSCRIBE_PAGE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"/><title>Unsubscribed</title></head>
<body style="font-family:Helvetica,Arial,sans-serif;background:#f0f4f8;padding:60px 16px;text-align:center;color:#374151;">
<h1 style="font-size:22px;">You have been unsubscribed</h1>
<p>You will not receive any more outreach emails from us.</p>
</body>
</html>"""


@router.get("/open")
async def track_open(
    background_tasks: BackgroundTasks,
    message_id: str | None = Query(default=None),
    contractor_id: str | None = Query(default=None),
):
    if contractor_id:
        background_tasks.add_task(process_event, PipelineEvent.OPEN, contractor_id, message_id=message_id)
    return Response(content=TRACKING_PIXEL, media_type="image/gif", headers=PIXEL_HEADERS)


@router.get("/click")
async def track_click(
    background_tasks: BackgroundTasks,
    url: str | None = Query(default=None),
    message_id: str | None = Query(default=None),
    contractor_id: str | None = Query(default=None),
):
    if contractor_id:
        background_tasks.add_task(process_event, PipelineEvent.CLICK, contractor_id, message_id=message_id)
    return RedirectResponse(url=safe_redirect_url(url), status_code=status.HTTP_302_FOUND)


@router.get("/unsubscribe", response_class=HTMLResponse)
async def unsubscribe_page(
    background_tasks: BackgroundTasks,
    contractor_id: str | None = Query(default=None),
    message_id: str | None = Query(default=None),
):
    if contractor_id:
        background_tasks.add_task(
            process_event, PipelineEvent.UNSUBSCRIBE, contractor_id, message_id=message_id
        )
    return HTMLResponse(content=UNSUBSCRIBE_PAGE)


@router.post("/unsubscribe", status_code=status.HTTP_202_ACCEPTED)
async def unsubscribe(body: UnsubscribeRequest, background_tasks: BackgroundTasks):
    background_tasks.add_task(
        process_event,
        PipelineEvent.UNSUBSCRIBE,
        body.contractor_id,
        email=body.email,
        message_id=body.message_id,
    )
    return ACCEPTED


@router.post("/signup", status_code=status.HTTP_202_ACCEPTED)
async def signup(body: SignupRequest, background_tasks: BackgroundTasks):
    """Conversion from the product signup flow."""
    background_tasks.add_task(
        process_event,
        PipelineEvent.SIGNUP,
        body.contractor_id,
        email=body.email,
        offer_code=body.promo_code,
        message_id=body.message_id,
    )
    return ACCEPTED
