"""
Persistence for cached_opportunities.

Lookups by classification code go through the partial indexes on active rows
(exact code, or the stored 4-digit sector), never a table scan.
"""

from datetime import datetime
from typing import Any

from lead_engine.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.opportunity_domain import Opportunity

logger = get_logger(__name__)

OPPORTUNITY_COLUMNS = """
    notice_id, title, agency, naics_code, solicitation_number, opportunity_type,
    set_aside, posted_date, response_deadline, description, contract_value, url,
    active, synced_at
"""


def row_to_opportunity(row: dict | None) -> Opportunity | None:
    if not row:
        return None
    data = {k: v for k, v in row.items() if k != "inserted"}
    return Opportunity(**data)


class OpportunityRepository:

    @staticmethod
    async def deactivate_all() -> int:
        """Flip every active row to inactive; rows are never deleted here."""
        count = await execute_query("UPDATE cached_opportunities SET active = FALSE WHERE active")
        logger.info("Marked cached opportunities inactive", count=count)
        return count

    @staticmethod
    async def upsert(opportunity: Opportunity) -> bool:
        """Insert or overwrite by notice id, forcing active and a fresh synced_at. Returns created."""
        row = await fetch_one(
            """
            INSERT INTO cached_opportunities (
                notice_id, title, agency, naics_code, solicitation_number, opportunity_type,
                set_aside, posted_date, response_deadline, description, contract_value, url,
                active, synced_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, TRUE, NOW())
            ON CONFLICT (notice_id) DO UPDATE SET
                title = EXCLUDED.title,
                agency = EXCLUDED.agency,
                naics_code = EXCLUDED.naics_code,
                solicitation_number = EXCLUDED.solicitation_number,
                opportunity_type = EXCLUDED.opportunity_type,
                set_aside = EXCLUDED.set_aside,
                posted_date = EXCLUDED.posted_date,
                response_deadline = EXCLUDED.response_deadline,
                description = EXCLUDED.description,
                contract_value = EXCLUDED.contract_value,
                url = EXCLUDED.url,
                active = TRUE,
                synced_at = NOW()
            RETURNING (xmax = 0) AS inserted
            """,
            (
                opportunity.notice_id,
                opportunity.title,
                opportunity.agency,
                opportunity.naics_code,
                opportunity.solicitation_number,
                opportunity.opportunity_type,
                opportunity.set_aside,
                opportunity.posted_date,
                opportunity.response_deadline,
                opportunity.description,
                opportunity.contract_value,
                opportunity.url,
            ),
        )
        return bool(row and row["inserted"])

    @staticmethod
    async def matching_codes(naics_code: str) -> list[str]:
        """Distinct active codes equal to naics_code or sharing its 4-digit sector."""
        rows = await fetch_all(
            """
            SELECT DISTINCT naics_code
            FROM cached_opportunities
            WHERE active
              AND (naics_code = %s OR naics_sector = %s)
              AND (response_deadline IS NULL OR response_deadline >= NOW())
            """,
            (naics_code, naics_code[:4]),
        )
        return [row["naics_code"] for row in rows]

    @staticmethod
    async def best_match(naics_code: str) -> Opportunity | None:
        """The soonest-closing active opportunity, exact code before sector match."""
        row = await fetch_one(
            f"""
            SELECT {OPPORTUNITY_COLUMNS}
            FROM cached_opportunities
            WHERE active
              AND (naics_code = %s OR naics_sector = %s)
              AND (response_deadline IS NULL OR response_deadline >= NOW())
            ORDER BY (naics_code = %s) DESC, response_deadline ASC NULLS LAST
            LIMIT 1
            """,
            (naics_code, naics_code[:4], naics_code),
        )
        return row_to_opportunity(row)

    @staticmethod
    async def list_cached(
        classification: str | None = None,
        active_only: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Opportunity], int, datetime | None]:
        """Page through the cache. Returns (page, total, last_synced_at)."""
        clauses = []
        params: list[Any] = []
        if active_only:
            clauses.append("active")
            clauses.append("(response_deadline IS NULL OR response_deadline >= NOW())")
        if classification:
            clauses.append("naics_code LIKE %s")
            params.append(f"{classification}%")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = await fetch_val(f"SELECT COUNT(*) FROM cached_opportunities {where}", tuple(params))
        rows = await fetch_all(
            f"""
            SELECT {OPPORTUNITY_COLUMNS}
            FROM cached_opportunities
            {where}
            ORDER BY response_deadline ASC NULLS LAST, notice_id
            LIMIT %s OFFSET %s
            """,
            tuple(params) + (limit, offset),
        )
        last_synced = await fetch_val(
            "SELECT MAX(synced_at) FROM cached_opportunities WHERE active"
        )
        return [row_to_opportunity(row) for row in rows], int(total or 0), last_synced

    @staticmethod
    async def count(active: bool | None = None) -> int:
        if active is None:
            return int(await fetch_val("SELECT COUNT(*) FROM cached_opportunities") or 0)
        return int(
            await fetch_val("SELECT COUNT(*) FROM cached_opportunities WHERE active = %s", (active,))
            or 0
        )
