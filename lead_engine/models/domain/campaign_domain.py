# models/domain/campaign_domain.py
"""
Outreach records: campaign sends (email logs), follow-up tasks, activity
entries and promotional offer codes.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EmailStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    OPENED = "opened"
    CLICKED = "clicked"
    UNSUBSCRIBED = "unsubscribed"


# Statuses a log row may hold before moving to the key status.
EMAIL_STATUS_PREDECESSORS: dict[EmailStatus, tuple[EmailStatus, ...]] = {
    EmailStatus.OPENED: (EmailStatus.SENT,),
    EmailStatus.CLICKED: (EmailStatus.SENT, EmailStatus.OPENED),
    EmailStatus.UNSUBSCRIBED: (EmailStatus.SENT, EmailStatus.OPENED, EmailStatus.CLICKED),
}


class CampaignType(str, Enum):
    COLD = "cold"
    FOLLOWUP = "followup"
    OPPORTUNITY = "opportunity"
    ONBOARDING = "onboarding"


class CampaignSend(BaseModel):
    """One outreach attempt. Append-only; only the status moves afterwards."""

    id: str
    contractor_id: str
    subject: str
    body: str
    campaign_type: CampaignType = CampaignType.COLD
    campaign_name: str | None = None
    offer_code: str | None = None
    status: EmailStatus
    provider_message_id: str | None = None
    error: str | None = None
    sent_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class TaskStatus(str, Enum):
    PENDING = "pending"
    OVERDUE = "overdue"
    DONE = "done"


OPEN_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.OVERDUE)


class FollowUpTask(BaseModel):
    id: str
    contractor_id: str
    contractor_name: str | None = None
    label: str
    title: str
    due_date: datetime
    priority: str = "medium"
    assignee: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    notes: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class ActivityType(str, Enum):
    EMAIL_SENT = "email_sent"
    EMAIL_OPENED = "email_opened"
    LINK_CLICKED = "link_clicked"
    SIGNED_UP = "signed_up"
    UNSUBSCRIBED = "unsubscribed"
    STAGE_CHANGED = "stage_changed"
    TRIAL_WARNING = "trial_warning"


class Activity(BaseModel):
    contractor_id: str
    type: ActivityType
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    dedupe_key: str | None = None
    created_by: str = "system"


class OfferCode(BaseModel):
    id: str
    code: str
    description: str | None = None
    discount: str | None = None
    type: str = "trial"
    usage_count: int = 0
    max_usage: int | None = None
    expires_at: datetime | None = None
    active: bool = True

    def redeemable(self, now: datetime | None = None) -> bool:
        if not self.active:
            return False
        if self.expires_at and self.expires_at < (now or datetime.now(UTC)):
            return False
        return self.max_usage is None or self.usage_count < self.max_usage
