# models/domain/contractor_domain.py
"""
Contractor domain model and pipeline vocabulary.

A contractor is keyed by its registry UEI. Score and priority are always
derived together (see lead_engine.scoring.engine.score_to_priority) and the
pipeline stage only moves backward through the terminal transitions.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel


class PipelineStage(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    ENGAGED = "engaged"
    HOT = "hot"
    CONVERTED = "converted"
    CHURNED = "churned"
    UNSUBSCRIBED = "unsubscribed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES

    @property
    def rank(self) -> int:
        """Position in the forward ordering; terminal stages have no rank."""
        return STAGE_ORDER.index(self) if self in STAGE_ORDER else -1


STAGE_ORDER = (
    PipelineStage.NEW,
    PipelineStage.CONTACTED,
    PipelineStage.ENGAGED,
    PipelineStage.HOT,
    PipelineStage.CONVERTED,
)
TERMINAL_STAGES = frozenset({PipelineStage.CHURNED, PipelineStage.UNSUBSCRIBED})


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ScoreLabel(str, Enum):
    HOT = "Hot"
    WARM = "Warm"
    COLD = "Cold"


@dataclass(slots=True)
class ContractorSnapshot:
    """Normalized registry entity, ready to be scored and upserted."""

    uei_number: str
    name: str
    email: str | None
    naics_code: str | None
    state: str | None
    business_type: str | None
    registration_date: datetime | None
    cage_code: str | None

    @property
    def sam_gov_id(self) -> str:
        return f"SAM-{self.uei_number}" if self.uei_number else ""


class Contractor(BaseModel):
    """Domain model for a contractors row."""

    id: str
    uei_number: str
    name: str
    email: str | None = None
    naics_code: str | None = None
    state: str | None = None
    business_type: str | None = None
    registration_date: datetime | None = None
    cage_code: str | None = None
    score: int = 0
    priority: Priority = Priority.LOW
    pipeline_stage: PipelineStage = PipelineStage.NEW
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    contact_attempts: int = 0
    last_contact: datetime | None = None
    offer_code: str | None = None
    is_test: bool = False
    version: int = 0
    created_at: datetime | None = None
    synced_at: datetime | None = None

    def to_snapshot(self) -> ContractorSnapshot:
        return ContractorSnapshot(
            uei_number=self.uei_number,
            name=self.name,
            email=self.email,
            naics_code=self.naics_code,
            state=self.state,
            business_type=self.business_type,
            registration_date=self.registration_date,
            cage_code=self.cage_code,
        )

    def contacted_within(self, days: int, now: datetime | None = None) -> bool:
        if not self.last_contact:
            return False
        now = now or datetime.now(UTC)
        return (now - self.last_contact).total_seconds() < days * 86400

    def trial_expired(self, now: datetime | None = None) -> bool:
        if not self.trial_end:
            return False
        return self.trial_end < (now or datetime.now(UTC))
