"""
Follow-up task scheduling and the overdue sweep.
"""

import uuid
from datetime import UTC, datetime, timedelta

from lead_engine.config import settings
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.campaign_domain import FollowUpTask, TaskStatus
from lead_engine.models.domain.contractor_domain import Contractor
from lead_engine.repositories.contractor_repository import ContractorRepository
from lead_engine.repositories.task_repository import TaskRepository

logger = get_logger(__name__)

DEFAULT_FOLLOWUP_LABEL = "Follow up on outreach email"
FOLLOWUP_NOTES = "Auto-created after email send. Check if opened and follow up."


def followup_label(campaign_name: str | None = None) -> str:
    """The semantic label that keys the one-open-task-per-contractor rule."""
    if campaign_name and campaign_name.strip():
        return f"Follow up: {campaign_name.strip()}"
    return DEFAULT_FOLLOWUP_LABEL


class FollowUpService:
    def __init__(
        self,
        tasks=TaskRepository,
        contractors=ContractorRepository,
        *,
        due_days: int | None = None,
        assignee: str | None = None,
    ):
        self.tasks = tasks
        self.contractors = contractors
        self.due_days = due_days or settings.FOLLOWUP_DUE_DAYS
        self.assignee = assignee or settings.FOLLOWUP_ASSIGNEE

    async def schedule(
        self, contractor: Contractor, campaign_name: str | None = None, now: datetime | None = None
    ) -> bool:
        """Create a follow-up unless an open one with the same label exists. Returns created."""
        now = now or datetime.now(UTC)
        label = followup_label(campaign_name)
        task = FollowUpTask(
            id=str(uuid.uuid4()),
            contractor_id=contractor.id,
            contractor_name=contractor.name,
            label=label,
            title=label,
            due_date=now + timedelta(days=self.due_days),
            priority="medium",
            assignee=self.assignee,
            status=TaskStatus.PENDING,
            notes=FOLLOWUP_NOTES,
        )
        created = await self.tasks.create_if_absent(task)
        if created:
            logger.info(
                "Follow-up task created",
                contractor_id=contractor.id,
                label=label,
                due_date=task.due_date.isoformat(),
            )
        else:
            logger.debug("Open follow-up already exists", contractor_id=contractor.id, label=label)
        return created

    async def schedule_many(
        self, contractors: list[Contractor], campaign_name: str | None = None, now: datetime | None = None
    ) -> dict:
        created = skipped = 0
        for contractor in contractors:
            if await self.schedule(contractor, campaign_name, now):
                created += 1
            else:
                skipped += 1
        return {"created": created, "skipped": skipped}

    async def schedule_for_ids(
        self, contractor_ids: list[str], campaign_name: str | None = None, now: datetime | None = None
    ) -> dict:
        """Explicit scheduling for a list of contractor ids; unknown ids are reported, not raised."""
        found: list[Contractor] = []
        missing: list[str] = []
        for contractor_id in dict.fromkeys(contractor_ids):
            contractor = await self.contractors.get(contractor_id)
            if contractor is None:
                missing.append(contractor_id)
            else:
                found.append(contractor)

        result = await self.schedule_many(found, campaign_name, now)
        result["not_found"] = missing
        logger.info(
            "Follow-ups scheduled",
            label=followup_label(campaign_name),
            created=result["created"],
            skipped=result["skipped"],
            not_found=len(missing),
        )
        return result

    async def mark_overdue(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        count = await self.tasks.mark_overdue(now)
        logger.info("Overdue follow-up sweep finished", marked_overdue=count)
        return count

    async def mark_done(self, task_id: str, now: datetime | None = None) -> FollowUpTask | None:
        return await self.tasks.mark_done(task_id, now or datetime.now(UTC))


followup_service = FollowUpService()
