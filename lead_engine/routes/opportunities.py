"""
Public opportunity read path. Served from the cache only; the registry is
never called on a user request.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from lead_engine.db.helpers import DatabaseError
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.middleware.rate_limit_dependencies import rate_limit_public
from lead_engine.models.api.opportunity_response import OpportunityListResponse
from lead_engine.services.opportunity_cache import opportunity_cache

logger = get_logger(__name__)

router = APIRouter(tags=["opportunities"])


@router.get("/opportunities", response_model=OpportunityListResponse)
async def list_opportunities(
    request: Request,
    classification: str | None = Query(default=None, max_length=6, pattern=r"^\d+$"),
    active: bool = Query(default=True),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _rate: None = Depends(rate_limit_public),
):
    try:
        opportunities, total, last_synced = await opportunity_cache.list_cached(
            classification=classification, active_only=active, limit=limit, offset=offset
        )
    except DatabaseError as e:
        logger.error("Opportunity cache read failed", error=str(e), classification=classification)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Opportunity cache temporarily unavailable",
        ) from e

    return OpportunityListResponse(
        opportunities=opportunities,
        total=total,
        limit=limit,
        offset=offset,
        last_synced=last_synced,
    )
