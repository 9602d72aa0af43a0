"""
Mapping of raw registry payloads into domain records.

Both mappers are total over dict input: a missing or malformed field becomes
None (or a documented default), never an exception. A record that cannot be
keyed at all is reported by returning None so the caller can drop it.
"""

from datetime import UTC, datetime
from typing import Any

from lead_engine.models.domain.contractor_domain import ContractorSnapshot
from lead_engine.models.domain.opportunity_domain import Opportunity

BUSINESS_TYPE_CODES = {
    "A2": "Woman-Owned",
    "QF": "Veteran-Owned",
    "A5": "HUBZone",
    "8A": "8(a) Certified",
    "XS": "Small Business",
    "MN": "Minority-Owned",
    "27": "SDVOSB",
    "A6": "WOSB",
}
DEFAULT_BUSINESS_TYPE = "Small Business"

# Point-of-contact fields tried in order for the outreach email
CONTACT_FIELDS = ("governmentBusinessPOC", "electronicBusinessPOC", "pastPerformancePOC")

_DATE_FORMATS = ("%m/%d/%Y", "%Y%m%d", "%Y-%m-%d %H:%M:%S")


def parse_registry_date(value: Any) -> datetime | None:
    """Parse the handful of date shapes the registry emits; None on anything else."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _primary_naics(assertions: dict) -> str | None:
    entries = [n for n in assertions.get("naicsCode") or [] if isinstance(n, dict)]
    if not entries:
        return None
    primary = next((n for n in entries if n.get("naicsPrimary") == "Y"), entries[0])
    return _clean(primary.get("naicsCode"))


def _contact_email(points_of_contact: dict) -> str | None:
    for field in CONTACT_FIELDS:
        email = _clean(_as_dict(points_of_contact.get(field)).get("electronicAddress"))
        if email:
            return email.lower()
    return None


def _business_type(assertions: dict) -> str:
    business_types = _as_dict(assertions.get("businessTypes"))
    labels = [
        BUSINESS_TYPE_CODES[entry.get("businessTypeCode")]
        for entry in business_types.get("businessTypeList") or []
        if isinstance(entry, dict) and entry.get("businessTypeCode") in BUSINESS_TYPE_CODES
    ]
    # Prefer a set-aside designation over plain small business
    for label in labels:
        if label != DEFAULT_BUSINESS_TYPE:
            return label
    return labels[0] if labels else DEFAULT_BUSINESS_TYPE


def entity_to_snapshot(entity: Any) -> ContractorSnapshot | None:
    """Map a registry entity record; None when it has no UEI to key on."""
    entity = _as_dict(entity)
    registration = _as_dict(entity.get("entityRegistration"))
    core = _as_dict(entity.get("coreData"))
    address = _as_dict(core.get("mailingAddress")) or _as_dict(core.get("physicalAddress"))
    assertions = _as_dict(entity.get("assertions"))
    contacts = _as_dict(entity.get("pointsOfContact"))

    uei = _clean(registration.get("ueiSAM"))
    if not uei:
        return None

    return ContractorSnapshot(
        uei_number=uei,
        name=_clean(registration.get("legalBusinessName"))
        or _clean(registration.get("dbaName"))
        or "Unknown",
        email=_contact_email(contacts),
        naics_code=_primary_naics(assertions),
        state=_clean(address.get("stateOrProvinceCode")),
        business_type=_business_type(assertions),
        registration_date=parse_registry_date(registration.get("registrationDate")),
        cage_code=_clean(registration.get("cageCode")),
    )


def _opportunity_naics(record: dict) -> str | None:
    naics = record.get("naicsCode")
    if isinstance(naics, dict):
        codes = naics.get("naicsCodes") or []
        if codes and isinstance(codes[0], dict):
            return _clean(codes[0].get("code"))
        return _clean(naics.get("code"))
    if isinstance(naics, list):
        return _clean(naics[0]) if naics else None
    return _clean(naics)


def _contract_value(amount: Any) -> str | None:
    if amount is None or amount == "":
        return None
    try:
        return f"${float(amount):,.0f}"
    except (TypeError, ValueError):
        return None


def record_to_opportunity(record: Any, synced_at: datetime | None = None) -> Opportunity | None:
    """Map a registry notice; None when it has no notice id."""
    record = _as_dict(record)
    notice_id = _clean(record.get("noticeId")) or _clean(record.get("id"))
    if not notice_id:
        return None

    description = record.get("description")
    if not isinstance(description, str):
        description = _as_dict(record.get("synopsis")).get("content") or ""

    return Opportunity(
        notice_id=notice_id,
        title=_clean(record.get("title")) or "Untitled",
        agency=_clean(record.get("fullParentPathName"))
        or _clean(record.get("organizationName"))
        or _clean(record.get("departmentName"))
        or "",
        naics_code=_opportunity_naics(record),
        solicitation_number=_clean(record.get("solicitationNumber")) or "",
        opportunity_type=_clean(record.get("type")) or _clean(record.get("baseType")) or "Solicitation",
        set_aside=_clean(record.get("typeOfSetAsideDescription")) or _clean(record.get("typeOfSetAside")),
        posted_date=parse_registry_date(record.get("postedDate")),
        response_deadline=parse_registry_date(record.get("responseDeadLine"))
        or parse_registry_date(record.get("archiveDate")),
        description=description,
        contract_value=_contract_value(_as_dict(record.get("award")).get("amount") or record.get("awardAmount")),
        url=_clean(record.get("uiLink")) or f"https://sam.gov/opp/{notice_id}/view",
        active=True,
        synced_at=synced_at or datetime.now(UTC),
    )
