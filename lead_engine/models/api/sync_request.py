# lead_engine/models/api/sync_request.py
"""
Sync trigger request models.
Used by the /sync routes for input validation.
"""

from datetime import date

from pydantic import BaseModel, Field, model_validator

from lead_engine.config import settings
from lead_engine.models.domain.sync_domain import DateWindow


class DateWindowRequest(BaseModel):
    """Inclusive registration date range."""

    date_from: date = Field(..., alias="from", description="First registration date (inclusive)")
    date_to: date = Field(..., alias="to", description="Last registration date (inclusive)")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_order(self):
        if self.date_from > self.date_to:
            raise ValueError("date window start must not be after its end")
        return self

    def to_window(self) -> DateWindow:
        return DateWindow(start=self.date_from, end=self.date_to)


class SyncContractorsRequest(BaseModel):
    """Request for POST /sync/contractors."""

    date_window: DateWindowRequest | None = Field(
        default=None, description="Registration window (default: last CONTRACTOR_SYNC_DAYS days)"
    )
    max: int | None = Field(default=None, ge=1, description="Maximum records fetched across all codes")
    classification_codes: list[str] | None = Field(
        default=None, description="Classification codes to sync (default: configured list)"
    )

    @model_validator(mode="after")
    def check_limits(self):
        if self.date_window is not None:
            span = (self.date_window.date_to - self.date_window.date_from).days
            if span > settings.CONTRACTOR_SYNC_MAX_DAYS:
                raise ValueError(f"date window may span at most {settings.CONTRACTOR_SYNC_MAX_DAYS} days")
        if self.max is not None and self.max > settings.CONTRACTOR_SYNC_RECORD_CEILING:
            raise ValueError(f"max may not exceed {settings.CONTRACTOR_SYNC_RECORD_CEILING}")
        return self


class SyncOpportunitiesRequest(BaseModel):
    """Request for POST /sync/opportunities."""

    classification_filter: list[str] | None = Field(
        default=None, description="Classification codes to refresh (default: configured list)"
    )
    max: int | None = Field(default=None, ge=1, le=10000, description="Maximum notices fetched")
    lookback_days: int | None = Field(default=None, ge=1, le=365, description="Posted-date horizon in days")
