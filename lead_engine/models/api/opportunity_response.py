# lead_engine/models/api/opportunity_response.py
from datetime import datetime

from pydantic import BaseModel, Field

from lead_engine.models.domain.opportunity_domain import Opportunity


class OpportunityListResponse(BaseModel):
    """Response for GET /opportunities."""

    opportunities: list[Opportunity]
    total: int = Field(..., description="Rows matching the filter, ignoring pagination")
    limit: int
    offset: int
    last_synced: datetime | None = Field(default=None, description="Most recent refresh of the cache")
