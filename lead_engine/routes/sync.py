"""
Sync trigger routes.

A sync that ran to completion answers 200 with its summary, even when some
codes or records failed (status "partial"). A run that could not start or
could not reach the registry at all answers with the same summary body and a
failure status: 500 for configuration, 503 for connectivity.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from lead_engine.auth.verify import require_job_token
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.api.sync_request import SyncContractorsRequest, SyncOpportunitiesRequest
from lead_engine.models.domain.sync_domain import DateWindow, SyncSummary
from lead_engine.services.sync_job import refresh_opportunities, sync_contractors

logger = get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[Depends(require_job_token)])

ERROR_KIND_STATUS = {
    "configuration": 500,
    "connectivity": 503,
}


def summary_response(summary: SyncSummary) -> JSONResponse:
    status_code = ERROR_KIND_STATUS.get(summary.error_kind, 200)
    return JSONResponse(status_code=status_code, content=summary.to_dict())


@router.post("/contractors")
async def trigger_contractor_sync(body: SyncContractorsRequest | None = None):
    """Fetch newly registered entities and upsert + score them."""
    body = body or SyncContractorsRequest()
    summary = await sync_contractors(
        window=body.date_window.to_window() if body.date_window else None,
        max_records=body.max,
        codes=body.classification_codes,
    )
    return summary_response(summary)


@router.post("/opportunities")
async def trigger_opportunity_refresh(body: SyncOpportunitiesRequest | None = None):
    """Refresh the opportunity cache."""
    body = body or SyncOpportunitiesRequest()
    window = DateWindow.last_days(body.lookback_days) if body.lookback_days else None
    summary = await refresh_opportunities(
        codes=body.classification_filter,
        window=window,
        max_records=body.max,
    )
    return summary_response(summary)
