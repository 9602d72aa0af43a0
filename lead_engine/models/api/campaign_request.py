# lead_engine/models/api/campaign_request.py
"""
Campaign and follow-up request models.
"""

from uuid import UUID

from pydantic import BaseModel, Field

from lead_engine.config import settings
from lead_engine.models.domain.campaign_domain import CampaignType
from lead_engine.models.domain.contractor_domain import PipelineStage
from lead_engine.outreach.messages import MessageTemplate
from lead_engine.repositories.contractor_repository import TargetSelection


class SelectionRequest(BaseModel):
    """Which contractors to consider. Explicit ids win over the filters."""

    contractor_ids: list[UUID] | None = Field(default=None, max_length=1000)
    naics_prefix: str | None = Field(default=None, min_length=2, max_length=6, pattern=r"^\d+$")
    states: list[str] | None = Field(default=None, description="Two-letter state codes")
    stages: list[PipelineStage] | None = None
    min_score: int | None = Field(default=None, ge=0, le=100)
    limit: int = Field(default=100, ge=1, le=settings.CAMPAIGN_MAX_RECIPIENTS)

    def to_selection(self) -> TargetSelection:
        return TargetSelection(
            contractor_ids=[str(i) for i in self.contractor_ids] if self.contractor_ids else None,
            naics_prefix=self.naics_prefix,
            states=[s.upper() for s in self.states] if self.states else None,
            stages=self.stages,
            min_score=self.min_score,
            limit=self.limit,
        )


class TemplateRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=300)
    body: str = Field(..., min_length=1, max_length=20000)
    name: str | None = Field(default=None, max_length=200, description="Campaign name")
    category: CampaignType = CampaignType.COLD
    offer_code: str | None = Field(default=None, max_length=64)

    def to_template(self) -> MessageTemplate:
        return MessageTemplate(
            subject=self.subject,
            body=self.body,
            name=self.name,
            category=self.category,
            offer_code=self.offer_code.strip().upper() if self.offer_code else None,
        )


class CampaignSendRequest(BaseModel):
    """Request for POST /campaigns/send."""

    selection: SelectionRequest
    template: TemplateRequest
    schedule_followups: bool = True


class FollowupsRequest(BaseModel):
    """Request for POST /campaigns/followups."""

    contractor_ids: list[UUID] = Field(..., min_length=1, max_length=1000)
    campaign_name: str | None = Field(default=None, max_length=200)
