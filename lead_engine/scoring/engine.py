"""
Deterministic sales-readiness scoring for registry contractors.

Weights (capped at 100):
    contact quality    20  parseable email 12, non free-mail domain 8
    classification     10
    business type      20  set-asides highest, plain small business lowest
    registration age   15  newer registrations score higher
    validation code    10  CAGE code present
    jurisdiction        5  two-letter state code
    opportunity match  20  exact code 20, same 4-digit sector 12

score() is a pure function of its arguments. The reference time is an
argument so a whole sync run scores against the same instant.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from lead_engine.models.domain.contractor_domain import ContractorSnapshot, Priority, ScoreLabel

MAX_SCORE = 100

HIGH_PRIORITY_THRESHOLD = 70
MEDIUM_PRIORITY_THRESHOLD = 45

HIGH_VALUE_SET_ASIDES = frozenset(
    {
        "8(a) Certified",
        "HUBZone",
        "SDVOSB",
        "WOSB",
        "Woman-Owned",
        "Veteran-Owned",
    }
)

BUSINESS_TYPE_POINTS = {
    "Minority-Owned": 15,
    "Small Business": 8,
}
SET_ASIDE_POINTS = 20
OTHER_BUSINESS_TYPE_POINTS = 5

# (max age in days, points); anything older scores the floor value
REGISTRATION_BANDS = (
    (7, 15),
    (30, 12),
    (90, 9),
    (180, 6),
    (365, 3),
)
REGISTRATION_FLOOR_POINTS = 1

FREE_EMAIL_DOMAINS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "msn.com",
        "aol.com",
        "icloud.com",
        "me.com",
        "proton.me",
        "protonmail.com",
        "mail.com",
    }
)
FREE_EMAIL_PROVIDER_PATTERN = re.compile(r"gmail|yahoo|hotmail|outlook|aol|icloud|proton", re.I)
EMAIL_PATTERN = re.compile(r"^[^@\s]+@([A-Za-z0-9-]+\.)+[A-Za-z]{2,}$")


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    contact_quality: int
    classification: int
    business_type: int
    registration_age: int
    validation_code: int
    jurisdiction: int
    opportunity_match: int

    @property
    def total(self) -> int:
        return min(
            MAX_SCORE,
            self.contact_quality
            + self.classification
            + self.business_type
            + self.registration_age
            + self.validation_code
            + self.jurisdiction
            + self.opportunity_match,
        )

    @property
    def label(self) -> ScoreLabel:
        return score_to_label(self.total)

    @property
    def priority(self) -> Priority:
        return score_to_priority(self.total)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "label": self.label.value,
            "priority": self.priority.value,
            "contact_quality": self.contact_quality,
            "classification": self.classification,
            "business_type": self.business_type,
            "registration_age": self.registration_age,
            "validation_code": self.validation_code,
            "jurisdiction": self.jurisdiction,
            "opportunity_match": self.opportunity_match,
        }


def is_parseable_email(email: str | None) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email.strip()) is not None


def is_free_mail(email: str) -> bool:
    domain = email.strip().rsplit("@", 1)[-1].lower()
    return domain in FREE_EMAIL_DOMAINS or bool(FREE_EMAIL_PROVIDER_PATTERN.search(domain))


def _contact_quality(email: str | None) -> int:
    if not is_parseable_email(email):
        return 0
    return 12 if is_free_mail(email) else 20


def _business_type(business_type: str | None) -> int:
    if not business_type:
        return 0
    if business_type in HIGH_VALUE_SET_ASIDES:
        return SET_ASIDE_POINTS
    return BUSINESS_TYPE_POINTS.get(business_type, OTHER_BUSINESS_TYPE_POINTS)


def _registration_age(registration_date: datetime | None, as_of: datetime) -> int:
    if not registration_date:
        return 0
    if registration_date.tzinfo is None:
        registration_date = registration_date.replace(tzinfo=UTC)
    days_ago = (as_of - registration_date).total_seconds() / 86400
    for max_days, points in REGISTRATION_BANDS:
        if days_ago <= max_days:
            return points
    return REGISTRATION_FLOOR_POINTS


def _opportunity_match(naics_code: str | None, active_codes: Iterable[str]) -> int:
    if not naics_code or len(naics_code) < 4:
        return 0
    sector = naics_code[:4]
    sector_hit = False
    for code in active_codes:
        if code == naics_code:
            return 20
        if code[:4] == sector:
            sector_hit = True
    return 12 if sector_hit else 0


def score_breakdown(
    snapshot: ContractorSnapshot,
    active_opportunity_codes: Iterable[str] = (),
    as_of: datetime | None = None,
) -> ScoreBreakdown:
    as_of = as_of or datetime.now(UTC)
    return ScoreBreakdown(
        contact_quality=_contact_quality(snapshot.email),
        classification=10 if snapshot.naics_code and len(snapshot.naics_code) >= 4 else 0,
        business_type=_business_type(snapshot.business_type),
        registration_age=_registration_age(snapshot.registration_date, as_of),
        validation_code=10 if snapshot.cage_code and snapshot.cage_code.strip() else 0,
        jurisdiction=5 if snapshot.state and len(snapshot.state.strip()) == 2 else 0,
        opportunity_match=_opportunity_match(snapshot.naics_code, active_opportunity_codes),
    )


def score(
    snapshot: ContractorSnapshot,
    active_opportunity_codes: Iterable[str] = (),
    as_of: datetime | None = None,
) -> int:
    """Return the 0-100 readiness score for a contractor snapshot."""
    return score_breakdown(snapshot, active_opportunity_codes, as_of).total


def score_to_priority(value: int) -> Priority:
    if value >= HIGH_PRIORITY_THRESHOLD:
        return Priority.HIGH
    if value >= MEDIUM_PRIORITY_THRESHOLD:
        return Priority.MEDIUM
    return Priority.LOW


def score_to_label(value: int) -> ScoreLabel:
    if value >= HIGH_PRIORITY_THRESHOLD:
        return ScoreLabel.HOT
    if value >= MEDIUM_PRIORITY_THRESHOLD:
        return ScoreLabel.WARM
    return ScoreLabel.COLD


def bump_score(current: int, bonus: int) -> tuple[int, Priority]:
    """Add an engagement bonus, capped, and return the matching priority."""
    new_score = max(0, min(MAX_SCORE, current + bonus))
    return new_score, score_to_priority(new_score)
