"""
Outreach dispatcher - selects recipients, renders, sends at a bounded rate,
logs every attempt and schedules follow-ups.

Sending is strictly sequential. SendThrottle spaces the *start* of every
provider call (first attempts and retries alike) by at least
SEND_MIN_INTERVAL_SECONDS; there is no burst allowance.

Sending does not move the pipeline stage. A successful send only bumps the
contact counter and last-contact time; the first open moves new -> contacted.
"""

import asyncio
import time
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from lead_engine.config import settings
from lead_engine.errors import ConfigurationError
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.campaign_domain import (
    Activity,
    ActivityType,
    CampaignSend,
    CampaignType,
    EmailStatus,
)
from lead_engine.models.domain.contractor_domain import Contractor, PipelineStage
from lead_engine.models.domain.opportunity_domain import Opportunity
from lead_engine.outreach.messages import (
    MessageTemplate,
    TrackingLinks,
    compile_template,
    render_message,
)
from lead_engine.repositories.activity_repository import ActivityRepository
from lead_engine.repositories.contractor_repository import ContractorRepository, TargetSelection
from lead_engine.repositories.email_log_repository import EmailLogRepository
from lead_engine.repositories.opportunity_repository import OpportunityRepository
from lead_engine.services.email_provider import EmailProvider, EmailProviderError, OutboundEmail
from lead_engine.services.followup_service import FollowUpService

logger = get_logger(__name__)

EXCLUDED_STAGES = frozenset({PipelineStage.CONVERTED, PipelineStage.UNSUBSCRIBED})


class SendThrottle:
    """Hard minimum spacing between successive provider calls."""

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self.clock = clock
        self.sleep = sleep
        self._last_call: float | None = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                delay = self._last_call + self.min_interval - self.clock()
                if delay > 0:
                    await self.sleep(delay)
            self._last_call = self.clock()


@dataclass(slots=True)
class DispatchSummary:
    campaign_name: str | None
    category: CampaignType
    selected: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    followups_created: int = 0
    stopped: bool = False
    error: str | None = None
    error_kind: str | None = None
    skip_reasons: Counter = field(default_factory=Counter)
    errors: list[dict] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        data = {
            "campaign_name": self.campaign_name,
            "category": self.category.value,
            "selected": self.selected,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "followups_created": self.followups_created,
            "stopped": self.stopped,
            "skip_reasons": dict(self.skip_reasons),
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }
        if self.error:
            data["error"] = self.error
            data["error_kind"] = self.error_kind
        return data


class OutreachDispatcher:
    def __init__(
        self,
        provider_factory: Callable[[], EmailProvider] = EmailProvider,
        contractors=ContractorRepository,
        opportunities=OpportunityRepository,
        email_logs=EmailLogRepository,
        activities=ActivityRepository,
        followups: FollowUpService | None = None,
        links: TrackingLinks | None = None,
        throttle: SendThrottle | None = None,
        cooldown_days: int | None = None,
    ):
        self.provider_factory = provider_factory
        self.contractors = contractors
        self.opportunities = opportunities
        self.email_logs = email_logs
        self.activities = activities
        self.followups = followups or FollowUpService()
        self.links = links or TrackingLinks()
        self.throttle = throttle or SendThrottle(settings.SEND_MIN_INTERVAL_SECONDS)
        self.cooldown_days = cooldown_days or settings.CONTACT_COOLDOWN_DAYS

    def exclusion_reason(
        self, contractor: Contractor, opportunity: Opportunity | None, category: CampaignType, now: datetime
    ) -> str | None:
        if contractor.pipeline_stage in EXCLUDED_STAGES:
            return contractor.pipeline_stage.value
        if contractor.contacted_within(self.cooldown_days, now):
            return "cooldown"
        if not contractor.email:
            return "no_email"
        if category is CampaignType.OPPORTUNITY and opportunity is None:
            return "no_matched_opportunity"
        return None

    async def send_campaign(
        self,
        selection: TargetSelection,
        template: MessageTemplate,
        *,
        schedule_followups: bool = True,
        stop_event: asyncio.Event | None = None,
        now: datetime | None = None,
    ) -> DispatchSummary:
        """
        Send one campaign.

        Raises:
            TemplateRenderError: the template does not compile (nothing is sent)
            ConfigurationError: provider credentials missing (nothing is sent)
        """
        started = time.monotonic()
        summary = DispatchSummary(campaign_name=template.name, category=template.category)

        subject_template = compile_template(template.subject)
        body_template = compile_template(template.body)
        provider = self.provider_factory()

        try:
            bounded = replace(selection, limit=min(selection.limit, settings.CAMPAIGN_MAX_RECIPIENTS))
            candidates = await self.contractors.find_candidates(bounded)
            summary.selected = len(candidates)
            logger.info(
                "Starting campaign dispatch",
                campaign_name=template.name,
                category=template.category.value,
                candidates=len(candidates),
            )

            for contractor in candidates:
                if stop_event is not None and stop_event.is_set():
                    summary.stopped = True
                    logger.info("Campaign dispatch stopped", sent=summary.sent)
                    break

                send_time = now or datetime.now(UTC)
                opportunity = None
                if contractor.naics_code:
                    opportunity = await self.opportunities.best_match(contractor.naics_code)

                reason = self.exclusion_reason(contractor, opportunity, template.category, send_time)
                if reason:
                    summary.skipped += 1
                    summary.skip_reasons[reason] += 1
                    continue

                try:
                    await self._send_one(
                        provider,
                        contractor,
                        opportunity,
                        template,
                        subject_template,
                        body_template,
                        summary,
                        send_time,
                        schedule_followups and len(candidates) > 1,
                    )
                except ConfigurationError as e:
                    summary.error = str(e)
                    summary.error_kind = e.kind
                    logger.error("Campaign dispatch aborted", error=str(e), error_kind=e.kind)
                    break
        finally:
            await provider.close()

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info("Campaign dispatch finished", **{k: v for k, v in summary.to_dict().items() if k != "errors"})
        return summary

    async def _send_one(
        self,
        provider: EmailProvider,
        contractor: Contractor,
        opportunity: Opportunity | None,
        template: MessageTemplate,
        subject_template,
        body_template,
        summary: DispatchSummary,
        now: datetime,
        schedule_followup: bool,
    ) -> None:
        # The id is fixed before rendering so links and the pixel can carry it
        message_id = str(uuid.uuid4())
        offer_code = template.offer_code or contractor.offer_code

        try:
            rendered = render_message(
                subject_template,
                body_template,
                contractor=contractor,
                opportunity=opportunity,
                message_id=message_id,
                category=template.category,
                offer_code=offer_code,
                links=self.links,
            )
        except ValueError as e:
            self._record_failure(summary, contractor, str(e))
            return

        outbound = OutboundEmail(
            to=contractor.email,
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            tags={"campaign_type": template.category.value, "contractor_id": contractor.id},
        )

        provider_message_id = None
        error = None
        config_error = None
        try:
            provider_message_id = await self._deliver(provider, outbound, contractor.id)
        except EmailProviderError as e:
            error = str(e)
        except ConfigurationError as e:
            error = str(e)
            config_error = e

        try:
            await self._log_send(
                contractor, rendered, template, message_id, offer_code, now, provider_message_id, error
            )
        except Exception as e:
            logger.error(
                "Failed to write email log",
                contractor_id=contractor.id,
                message_id=message_id,
                error=str(e),
            )

        if error:
            self._record_failure(summary, contractor, error)
            # Aborts the batch; the log write above must not mask it
            if config_error is not None:
                raise config_error
            return

        summary.sent += 1
        try:
            await self.contractors.record_contact(contractor.id, now)
            await self.activities.record(
                Activity(
                    contractor_id=contractor.id,
                    type=ActivityType.EMAIL_SENT,
                    description=f"Email sent: {rendered.subject}",
                    metadata={"message_id": message_id, "campaign_type": template.category.value},
                )
            )
            if schedule_followup and await self.followups.schedule(contractor, template.name, now):
                summary.followups_created += 1
        except Exception as e:
            logger.error(
                "Post-send bookkeeping failed",
                contractor_id=contractor.id,
                message_id=message_id,
                error=str(e),
            )

    async def _deliver(self, provider: EmailProvider, outbound: OutboundEmail, contractor_id: str) -> str:
        """One provider call, retried once when the failure is recoverable."""
        await self.throttle.wait()
        try:
            return await provider.send(outbound)
        except EmailProviderError as e:
            if not e.recoverable:
                raise
            logger.warning(
                "Email send failed, retrying once",
                contractor_id=contractor_id,
                status_code=e.status_code,
                error=str(e),
            )
        await self.throttle.wait()
        return await provider.send(outbound)

    async def _log_send(
        self,
        contractor: Contractor,
        rendered,
        template: MessageTemplate,
        message_id: str,
        offer_code: str | None,
        now: datetime,
        provider_message_id: str | None,
        error: str | None,
    ) -> None:
        await self.email_logs.create(
            CampaignSend(
                id=message_id,
                contractor_id=contractor.id,
                subject=rendered.subject,
                body=rendered.html,
                campaign_type=template.category,
                campaign_name=template.name,
                offer_code=offer_code,
                status=EmailStatus.FAILED if error else EmailStatus.SENT,
                provider_message_id=provider_message_id,
                error=error,
                sent_at=now,
            )
        )

    def _record_failure(self, summary: DispatchSummary, contractor: Contractor, error: str) -> None:
        summary.failed += 1
        summary.errors.append({"contractor_id": contractor.id, "error": error})
        logger.warning("Email send failed", contractor_id=contractor.id, error=error)


outreach_dispatcher = OutreachDispatcher()
