"""
Pipeline service - applies engagement events and sweep transitions to contractors.

Every write is read-latest-then-conditional: the contractor is re-read, the
transition planned against that row, and written with a version check. A
version miss re-reads and re-plans, up to STAGE_WRITE_ATTEMPTS times.

Duplicate open/click/signup events are suppressed through the activity log:
the first delivery in a de-duplication window claims a unique dedupe key, a
later delivery finds the key taken and is a silent no-op. If the transition
write then fails, the claim is released so a retried delivery can apply it.
A signup arriving while the contractor is unsubscribed claims a key qualified
with that row's version, so a re-signup is never mistaken for a repeat.

Unsubscribe is not de-duplicated: it is idempotent on its own, and must still
apply after a same-day unsubscribe and re-signup.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from lead_engine.config import settings
from lead_engine.errors import LeadEngineError
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.campaign_domain import Activity, ActivityType, EmailStatus
from lead_engine.models.domain.contractor_domain import Contractor, PipelineStage
from lead_engine.pipeline.state_machine import (
    DEDUPED_EVENTS,
    PipelineEvent,
    dedupe_key,
    plan_transition,
)
from lead_engine.repositories.activity_repository import ActivityRepository
from lead_engine.repositories.contractor_repository import ContractorRepository
from lead_engine.repositories.email_log_repository import EmailLogRepository
from lead_engine.repositories.offer_code_repository import OfferCodeRepository

logger = get_logger(__name__)

EVENT_ACTIVITY = {
    PipelineEvent.OPEN: (ActivityType.EMAIL_OPENED, "Email opened"),
    PipelineEvent.CLICK: (ActivityType.LINK_CLICKED, "Link clicked in email"),
    PipelineEvent.SIGNUP: (ActivityType.SIGNED_UP, "Signed up for a trial"),
    PipelineEvent.UNSUBSCRIBE: (ActivityType.UNSUBSCRIBED, "Unsubscribed from outreach"),
}

EVENT_EMAIL_STATUS = {
    PipelineEvent.OPEN: EmailStatus.OPENED,
    PipelineEvent.CLICK: EmailStatus.CLICKED,
    PipelineEvent.UNSUBSCRIBE: EmailStatus.UNSUBSCRIBED,
}


class ContractorNotFoundError(LeadEngineError):
    kind = "not_found"


class StageConflictError(LeadEngineError):
    """The contractor kept changing underneath us for every attempt."""

    kind = "conflict"

    def __init__(self, message: str):
        super().__init__(message, recoverable=True)


@dataclass(slots=True)
class TransitionResult:
    contractor_id: str
    event: PipelineEvent
    duplicate: bool = False
    previous_stage: PipelineStage | None = None
    stage: PipelineStage | None = None
    score: int | None = None
    offer_code_redeemed: bool = False

    @property
    def stage_changed(self) -> bool:
        return self.previous_stage is not None and self.previous_stage != self.stage

    def to_dict(self) -> dict[str, Any]:
        return {
            "contractor_id": self.contractor_id,
            "event": self.event.value,
            "duplicate": self.duplicate,
            "previous_stage": self.previous_stage.value if self.previous_stage else None,
            "stage": self.stage.value if self.stage else None,
            "score": self.score,
            "offer_code_redeemed": self.offer_code_redeemed,
        }


class PipelineService:
    def __init__(
        self,
        contractors=ContractorRepository,
        activities=ActivityRepository,
        email_logs=EmailLogRepository,
        offer_codes=OfferCodeRepository,
        *,
        dedupe_window_hours: int | None = None,
        trial_days: int | None = None,
        max_attempts: int | None = None,
    ):
        self.contractors = contractors
        self.activities = activities
        self.email_logs = email_logs
        self.offer_codes = offer_codes
        self.dedupe_window_hours = dedupe_window_hours or settings.TRACKING_DEDUPE_WINDOW_HOURS
        self.trial_days = trial_days or settings.TRIAL_DAYS
        self.max_attempts = max_attempts or settings.STAGE_WRITE_ATTEMPTS

    async def apply(
        self,
        contractor_id: str,
        event: PipelineEvent,
        *,
        message_id: str | None = None,
        offer_code: str | None = None,
        now: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """
        Apply one event to one contractor.

        Raises:
            ContractorNotFoundError: unknown contractor id
            StageConflictError: every attempt lost the version race
        """
        now = now or datetime.now(UTC)
        offer_code = offer_code.strip().upper() if offer_code else None
        result = TransitionResult(contractor_id=contractor_id, event=event)

        current = await self.contractors.get(contractor_id)
        if current is None:
            raise ContractorNotFoundError(f"Contractor {contractor_id} not found")

        activity = None
        if event in EVENT_ACTIVITY:
            activity_type, description = EVENT_ACTIVITY[event]
            activity = Activity(
                contractor_id=contractor_id,
                type=activity_type,
                description=description,
                metadata={"message_id": message_id, "offer_code": offer_code, **(metadata or {})},
            )

        claimed_key = None
        if event in DEDUPED_EVENTS:
            activity.dedupe_key = dedupe_key(
                event, contractor_id, now, self.dedupe_window_hours, self._dedupe_qualifier(current, event)
            )
            if not await self.activities.record(activity):
                logger.info(
                    "Duplicate engagement event ignored",
                    contractor_id=contractor_id,
                    pipeline_event=event.value,
                    message_id=message_id,
                )
                result.duplicate = True
                return result
            claimed_key = activity.dedupe_key

        try:
            before, after = await self._write_transition(contractor_id, event, now, offer_code, current)
        except Exception:
            if claimed_key:
                await self.activities.release(claimed_key)
            raise

        result.previous_stage = before.pipeline_stage
        result.stage = after.pipeline_stage
        result.score = after.score

        if result.stage_changed:
            # Undeduped events only leave a trail when they moved the contractor
            if activity is not None and claimed_key is None:
                await self.activities.record(activity)
            await self.activities.record(
                Activity(
                    contractor_id=contractor_id,
                    type=ActivityType.STAGE_CHANGED,
                    description=f"Stage changed from {before.pipeline_stage.value} to {after.pipeline_stage.value}",
                    metadata={"event": event.value, "from": before.pipeline_stage.value, "to": after.pipeline_stage.value},
                )
            )
            logger.info(
                "Pipeline stage changed",
                contractor_id=contractor_id,
                pipeline_event=event.value,
                from_stage=before.pipeline_stage.value,
                to_stage=after.pipeline_stage.value,
                score=after.score,
            )

        # Usage counts once per conversion, not once per signup delivery
        if (
            event is PipelineEvent.SIGNUP
            and offer_code
            and before.pipeline_stage is not PipelineStage.CONVERTED
            and after.pipeline_stage is PipelineStage.CONVERTED
        ):
            result.offer_code_redeemed = await self._redeem_offer_code(contractor_id, offer_code, now)

        if message_id and event in EVENT_EMAIL_STATUS:
            await self.email_logs.advance_status(message_id, EVENT_EMAIL_STATUS[event])

        return result

    @staticmethod
    def _dedupe_qualifier(contractor: Contractor, event: PipelineEvent) -> str | None:
        """A signup after an unsubscribe is a new conversion, not a repeat of the last one."""
        if event is PipelineEvent.SIGNUP and contractor.pipeline_stage is PipelineStage.UNSUBSCRIBED:
            return f"{contractor.pipeline_stage.value}.v{contractor.version}"
        return None

    async def _write_transition(
        self,
        contractor_id: str,
        event: PipelineEvent,
        now: datetime,
        offer_code: str | None,
        current: Contractor | None = None,
    ) -> tuple[Contractor, Contractor]:
        """Returns (row the transition was planned against, row after the write)."""
        for attempt in range(1, self.max_attempts + 1):
            if current is None:
                current = await self.contractors.get(contractor_id)
            if current is None:
                raise ContractorNotFoundError(f"Contractor {contractor_id} not found")

            changes = plan_transition(current, event, now, self.trial_days, offer_code)
            if not changes:
                return current, current

            updated = await self.contractors.apply_transition(contractor_id, current.version, changes)
            if updated is not None:
                return current, updated

            logger.debug(
                "Contractor version changed, re-applying transition",
                contractor_id=contractor_id,
                pipeline_event=event.value,
                attempt=attempt,
            )
            current = None

        raise StageConflictError(
            f"Could not apply {event.value} to contractor {contractor_id} after {self.max_attempts} attempts"
        )

    async def _redeem_offer_code(self, contractor_id: str, code: str, now: datetime) -> bool:
        redeemed = await self.offer_codes.redeem(code, now)
        if redeemed is None:
            logger.warning(
                "Offer code not redeemable, signup kept without it",
                contractor_id=contractor_id,
                offer_code=code,
            )
            return False
        logger.info(
            "Offer code redeemed",
            contractor_id=contractor_id,
            offer_code=code,
            usage_count=redeemed.usage_count,
        )
        return True

    async def signup(
        self,
        *,
        contractor_id: str | None = None,
        email: str | None = None,
        offer_code: str | None = None,
        message_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Convert a contractor identified by id or, failing that, by email."""
        return await self.apply(
            await self._resolve_id(contractor_id, email),
            PipelineEvent.SIGNUP,
            message_id=message_id,
            offer_code=offer_code,
            now=now,
        )

    async def unsubscribe(
        self,
        *,
        contractor_id: str | None = None,
        email: str | None = None,
        message_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        return await self.apply(
            await self._resolve_id(contractor_id, email), PipelineEvent.UNSUBSCRIBE, message_id=message_id, now=now
        )

    async def _resolve_id(self, contractor_id: str | None, email: str | None) -> str:
        if contractor_id:
            return contractor_id
        if not email:
            raise ValueError("contractor_id or email is required")
        contractor = await self.contractors.get_by_email(email)
        if contractor is None:
            raise ContractorNotFoundError(f"No contractor with email {email}")
        return contractor.id


pipeline_service = PipelineService()
