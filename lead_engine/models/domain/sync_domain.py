# models/domain/sync_domain.py
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import Enum

from pydantic import BaseModel


class SyncKind(str, Enum):
    CONTRACTORS = "contractors"
    OPPORTUNITIES = "opportunities"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class DateWindow:
    """Inclusive calendar date range sent to the registry."""

    start: date
    end: date

    @classmethod
    def last_days(cls, days: int, today: date | None = None) -> "DateWindow":
        today = today or datetime.now(UTC).date()
        return cls(start=today - timedelta(days=days), end=today)


@dataclass(slots=True)
class CodeError:
    """A classification code whose fetch ended early."""

    code: str
    kind: str
    message: str

    def to_dict(self) -> dict:
        return {"code": self.code, "kind": self.kind, "message": self.message}


@dataclass(slots=True)
class SyncSummary:
    kind: SyncKind
    window: DateWindow
    fetched: int = 0
    new: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    status: SyncStatus = SyncStatus.SUCCESS
    error: str | None = None
    error_kind: str | None = None
    errors: list[CodeError] = field(default_factory=list)
    duration_ms: int = 0
    average_score: int | None = None
    active_codes_used: int | None = None

    def to_dict(self) -> dict:
        data = {
            "kind": self.kind.value,
            "status": self.status.value,
            "fetched": self.fetched,
            "new": self.new,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
            "date_range": {"from": self.window.start.isoformat(), "to": self.window.end.isoformat()},
            "duration_ms": self.duration_ms,
        }
        if self.error:
            data["error"] = self.error
            data["error_kind"] = self.error_kind
        if self.average_score is not None:
            data["average_score"] = self.average_score
        if self.active_codes_used is not None:
            data["active_codes_used"] = self.active_codes_used
        return data


class SyncRunRecord(BaseModel):
    """Audit row written at the end of every sync attempt."""

    kind: SyncKind
    fetched: int
    new_count: int
    updated_count: int
    skipped: int
    date_from: date
    date_to: date
    status: SyncStatus
    duration_ms: int
    error: str | None = None
    errors: list[dict] = []

    @classmethod
    def from_summary(cls, summary: SyncSummary) -> "SyncRunRecord":
        return cls(
            kind=summary.kind,
            fetched=summary.fetched,
            new_count=summary.new,
            updated_count=summary.updated,
            skipped=summary.skipped,
            date_from=summary.window.start,
            date_to=summary.window.end,
            status=summary.status,
            duration_ms=summary.duration_ms,
            error=summary.error,
            errors=[e.to_dict() for e in summary.errors],
        )
