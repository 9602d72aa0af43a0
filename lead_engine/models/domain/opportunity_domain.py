# models/domain/opportunity_domain.py
from datetime import datetime

from pydantic import BaseModel


class Opportunity(BaseModel):
    """A cached registry notice. Read-only outside the opportunity sync."""

    notice_id: str
    title: str = "Untitled"
    agency: str = ""
    naics_code: str | None = None
    solicitation_number: str = ""
    opportunity_type: str = "Solicitation"
    set_aside: str | None = None
    posted_date: datetime | None = None
    response_deadline: datetime | None = None
    description: str = ""
    contract_value: str | None = None
    url: str | None = None
    active: bool = True
    synced_at: datetime | None = None

    @property
    def naics_sector(self) -> str | None:
        return self.naics_code[:4] if self.naics_code else None
