# lead_engine/models/api/tracking_request.py
from pydantic import BaseModel, Field, model_validator


class ContractorRef(BaseModel):
    """A contractor identified by id, or by email when the id is unknown."""

    contractor_id: str | None = None
    email: str | None = Field(default=None, max_length=320)
    message_id: str | None = None

    @model_validator(mode="after")
    def require_identifier(self):
        if not (self.contractor_id or (self.email and self.email.strip())):
            raise ValueError("contractor_id or email is required")
        if self.email:
            self.email = self.email.strip().lower()
        return self


class SignupRequest(ContractorRef):
    """Request for POST /track/signup."""

    promo_code: str | None = Field(default=None, max_length=64)


class UnsubscribeRequest(ContractorRef):
    """Request for POST /track/unsubscribe."""
