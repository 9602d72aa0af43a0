from datetime import datetime

from lead_engine.db.helpers import fetch_one
from lead_engine.models.domain.campaign_domain import OfferCode

OFFER_CODE_COLUMNS = """
    id, code, description, discount, type, usage_count, max_usage, expires_at, active
"""


def row_to_offer_code(row: dict | None) -> OfferCode | None:
    if not row:
        return None
    data = dict(row)
    data["id"] = str(data["id"])
    return OfferCode(**data)


class OfferCodeRepository:

    @staticmethod
    async def get(code: str) -> OfferCode | None:
        row = await fetch_one(
            f"SELECT {OFFER_CODE_COLUMNS} FROM offer_codes WHERE code = %s", (code.strip().upper(),)
        )
        return row_to_offer_code(row)

    @staticmethod
    async def redeem(code: str, now: datetime) -> OfferCode | None:
        """
        Atomically bump usage if the code is active, unexpired and under its cap.
        Returns the updated code, or None when it cannot be redeemed.
        """
        row = await fetch_one(
            f"""
            UPDATE offer_codes
            SET usage_count = usage_count + 1, updated_at = NOW()
            WHERE code = %s
              AND active
              AND (expires_at IS NULL OR expires_at > %s)
              AND (max_usage IS NULL OR usage_count < max_usage)
            RETURNING {OFFER_CODE_COLUMNS}
            """,
            (code.strip().upper(), now),
        )
        return row_to_offer_code(row)
