"""
Campaign dispatch and explicit follow-up scheduling.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from lead_engine.auth.verify import require_job_token
from lead_engine.errors import ConfigurationError
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.api.campaign_request import CampaignSendRequest, FollowupsRequest
from lead_engine.outreach.messages import TemplateRenderError
from lead_engine.services.followup_service import followup_service
from lead_engine.services.outreach_dispatcher import outreach_dispatcher

logger = get_logger(__name__)

router = APIRouter(prefix="/campaigns", tags=["campaigns"], dependencies=[Depends(require_job_token)])


@router.post("/send")
async def send_campaign(body: CampaignSendRequest):
    """
    Send one campaign. Per-recipient failures are counted in the summary; a
    provider configuration failure (before or during the batch) answers 500.
    """
    try:
        summary = await outreach_dispatcher.send_campaign(
            body.selection.to_selection(),
            body.template.to_template(),
            schedule_followups=body.schedule_followups,
        )
    except TemplateRenderError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except ConfigurationError as e:
        logger.error("Campaign dispatch not started", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": str(e), "error_kind": e.kind},
        ) from e

    status_code = 500 if summary.error_kind == "configuration" else 200
    return JSONResponse(status_code=status_code, content=summary.to_dict())


@router.post("/followups")
async def schedule_followups(body: FollowupsRequest):
    """Create follow-up tasks; contractors with an open task under the same label are skipped."""
    return await followup_service.schedule_for_ids(
        [str(contractor_id) for contractor_id in body.contractor_ids], body.campaign_name
    )
