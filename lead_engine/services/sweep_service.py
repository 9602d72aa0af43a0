"""
Daily sweeps: overdue follow-ups, trial-ending warnings and trial expiry.

Each sweep is safe to run more than once on the same day:
- overdue marking only touches pending tasks past due
- a trial warning is claimed once per contractor and trial end date
- expiry goes through the pipeline state machine, which is a no-op for a
  contractor that is no longer converted

Notice emails are best-effort. They are sent only when the email provider is
configured, and a failed notice never blocks the stage change.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from lead_engine.config import settings
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.campaign_domain import Activity, ActivityType
from lead_engine.models.domain.contractor_domain import Contractor
from lead_engine.outreach.messages import render_trial_notice
from lead_engine.pipeline.state_machine import PipelineEvent
from lead_engine.repositories.activity_repository import ActivityRepository
from lead_engine.repositories.contractor_repository import ContractorRepository
from lead_engine.services.email_provider import EmailProvider, OutboundEmail
from lead_engine.services.followup_service import FollowUpService
from lead_engine.services.outreach_dispatcher import SendThrottle
from lead_engine.services.pipeline_service import PipelineService

logger = get_logger(__name__)


class SweepService:
    def __init__(
        self,
        contractors=ContractorRepository,
        activities=ActivityRepository,
        pipeline: PipelineService | None = None,
        followups: FollowUpService | None = None,
        provider_factory: Callable[[], EmailProvider] | None = EmailProvider,
    ):
        self.contractors = contractors
        self.activities = activities
        self.pipeline = pipeline or PipelineService(contractors=contractors, activities=activities)
        self.followups = followups or FollowUpService()
        self.provider_factory = provider_factory

    async def mark_overdue_followups(self, now: datetime | None = None) -> dict:
        marked = await self.followups.mark_overdue(now or datetime.now(UTC))
        return {"marked_overdue": marked}

    async def expire_trials(self, now: datetime | None = None) -> dict:
        """Move converted contractors whose trial has ended to churned."""
        now = now or datetime.now(UTC)
        summary = {"candidates": 0, "expired": 0, "unchanged": 0, "failed": 0, "notices_sent": 0, "errors": []}

        candidates = await self.contractors.list_expired_trials(now)
        summary["candidates"] = len(candidates)
        expired: list[Contractor] = []

        for contractor in candidates:
            try:
                result = await self.pipeline.apply(contractor.id, PipelineEvent.TRIAL_EXPIRED, now=now)
            except Exception as e:
                summary["failed"] += 1
                summary["errors"].append({"contractor_id": contractor.id, "error": str(e)})
                logger.error("Trial expiry failed", contractor_id=contractor.id, error=str(e))
                continue
            if result.stage_changed:
                summary["expired"] += 1
                expired.append(contractor)
            else:
                summary["unchanged"] += 1

        summary["notices_sent"] = await self._send_notices([(c, 0) for c in expired])
        logger.info("Trial expiry sweep finished", **{k: v for k, v in summary.items() if k != "errors"})
        return summary

    async def send_trial_warnings(self, now: datetime | None = None) -> dict:
        """One-time notice to trials ending within the warning window."""
        now = now or datetime.now(UTC)
        summary = {"candidates": 0, "claimed": 0, "already_warned": 0, "notices_sent": 0}

        start = now + timedelta(days=settings.TRIAL_WARNING_MIN_DAYS)
        end = now + timedelta(days=settings.TRIAL_WARNING_MAX_DAYS)
        candidates = await self.contractors.list_trials_ending_between(start, end)
        summary["candidates"] = len(candidates)

        to_notify: list[tuple[Contractor, int]] = []
        for contractor in candidates:
            days_left = max(1, round((contractor.trial_end - now).total_seconds() / 86400))
            claimed = await self.activities.record(
                Activity(
                    contractor_id=contractor.id,
                    type=ActivityType.TRIAL_WARNING,
                    description=f"Trial ending soon ({days_left} days left)",
                    metadata={"days_left": days_left, "trial_end": contractor.trial_end.isoformat()},
                    dedupe_key=f"trial_warning:{contractor.id}:{contractor.trial_end.date().isoformat()}",
                )
            )
            if not claimed:
                summary["already_warned"] += 1
                continue
            summary["claimed"] += 1
            to_notify.append((contractor, days_left))

        summary["notices_sent"] = await self._send_notices(to_notify)
        logger.info("Trial warning sweep finished", **summary)
        return summary

    async def run_daily(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(UTC)
        return {
            "followups": await self.mark_overdue_followups(now),
            "trial_warnings": await self.send_trial_warnings(now),
            "trial_expiry": await self.expire_trials(now),
        }

    async def _send_notices(self, notices: list[tuple[Contractor, int]]) -> int:
        notices = [(c, days) for c, days in notices if c.email]
        if not notices:
            return 0
        if self.provider_factory is None or (
            self.provider_factory is EmailProvider and not settings.email_configured()
        ):
            logger.info("Email provider not configured, trial notices skipped", count=len(notices))
            return 0

        sent = 0
        throttle = SendThrottle(settings.SEND_MIN_INTERVAL_SECONDS)
        try:
            async with self.provider_factory() as provider:
                for contractor, days_left in notices:
                    await throttle.wait()
                    rendered = render_trial_notice(contractor, days_left)
                    try:
                        await provider.send(
                            OutboundEmail(
                                to=contractor.email,
                                subject=rendered.subject,
                                html=rendered.html,
                                text=rendered.text,
                                tags={"campaign_type": "trial_notice"},
                            )
                        )
                        sent += 1
                    except Exception as e:
                        logger.warning(
                            "Trial notice failed", contractor_id=contractor.id, days_left=days_left, error=str(e)
                        )
        except Exception as e:
            logger.error("Trial notices aborted", error=str(e))
        return sent


sweep_service = SweepService()
