"""
Pipeline stage transitions.

    new -> contacted -> engaged -> hot -> converted
    any non-terminal stage -> churned | unsubscribed  (absorbing)

plan_transition() is pure: it takes the latest persisted contractor and an
event, and returns the column changes to write (empty when the event is a
no-op for that contractor). Sync never goes through here, so a sync cannot
move a stage at all.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from lead_engine.models.domain.contractor_domain import Contractor, PipelineStage, Priority
from lead_engine.scoring.engine import MAX_SCORE, bump_score

OPEN_SCORE_BONUS = 5
CLICK_SCORE_BONUS = 8


class PipelineEvent(str, Enum):
    OPEN = "open"
    CLICK = "click"
    SIGNUP = "signup"
    UNSUBSCRIBE = "unsubscribe"
    TRIAL_EXPIRED = "trial_expired"


# Events de-duplicated per contractor and time bucket before they are applied
DEDUPED_EVENTS = frozenset({PipelineEvent.OPEN, PipelineEvent.CLICK, PipelineEvent.SIGNUP})

_OPEN_ADVANCE = {
    PipelineStage.NEW: PipelineStage.CONTACTED,
    PipelineStage.CONTACTED: PipelineStage.ENGAGED,
}
_CLICK_ADVANCES_FROM = frozenset({PipelineStage.NEW, PipelineStage.CONTACTED, PipelineStage.ENGAGED})


def _with_bonus(changes: dict[str, Any], contractor: Contractor, bonus: int) -> dict[str, Any]:
    new_score, priority = bump_score(contractor.score, bonus)
    if new_score != contractor.score:
        changes["score"] = new_score
    if priority != contractor.priority:
        changes["priority"] = priority
    return changes


def plan_transition(
    contractor: Contractor,
    event: PipelineEvent,
    now: datetime,
    trial_days: int = 14,
    offer_code: str | None = None,
) -> dict[str, Any]:
    stage = contractor.pipeline_stage

    if event is PipelineEvent.UNSUBSCRIBE:
        if stage is PipelineStage.UNSUBSCRIBED:
            return {}
        return {"pipeline_stage": PipelineStage.UNSUBSCRIBED}

    if event is PipelineEvent.SIGNUP:
        changes: dict[str, Any] = {}
        if stage is not PipelineStage.CONVERTED:
            changes["pipeline_stage"] = PipelineStage.CONVERTED
            changes["trial_start"] = now
            changes["trial_end"] = now + timedelta(days=trial_days)
        if contractor.score != MAX_SCORE:
            changes["score"] = MAX_SCORE
        if contractor.priority is not Priority.HIGH:
            changes["priority"] = Priority.HIGH
        if offer_code and offer_code != contractor.offer_code:
            changes["offer_code"] = offer_code
        return changes

    if event is PipelineEvent.TRIAL_EXPIRED:
        if stage is PipelineStage.CONVERTED and contractor.trial_expired(now):
            return {"pipeline_stage": PipelineStage.CHURNED}
        return {}

    if stage.is_terminal:
        return {}

    if event is PipelineEvent.OPEN:
        changes = {}
        if stage in _OPEN_ADVANCE:
            changes["pipeline_stage"] = _OPEN_ADVANCE[stage]
        return _with_bonus(changes, contractor, OPEN_SCORE_BONUS)

    if event is PipelineEvent.CLICK:
        changes = {}
        if stage in _CLICK_ADVANCES_FROM:
            changes["pipeline_stage"] = PipelineStage.HOT
        return _with_bonus(changes, contractor, CLICK_SCORE_BONUS)

    raise ValueError(f"Unhandled pipeline event: {event}")


def dedupe_bucket(now: datetime, window_hours: int) -> int:
    """Index of the fixed window (aligned to the epoch, UTC) that now falls in."""
    return int(now.timestamp() // (window_hours * 3600))


def dedupe_key(
    event: PipelineEvent,
    contractor_id: str,
    now: datetime,
    window_hours: int,
    qualifier: str | None = None,
) -> str:
    key = f"{event.value}:{contractor_id}:{dedupe_bucket(now, window_hours)}"
    return f"{key}:{qualifier}" if qualifier else key
