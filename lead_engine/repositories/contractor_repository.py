"""
Persistence for the contractors table.

All writes are single-row: the sync upsert keyed by UEI, an atomic contact
counter, and version-checked stage/score updates used by the pipeline.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from lead_engine.db.helpers import execute_query, fetch_all, fetch_one
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.contractor_domain import (
    Contractor,
    ContractorSnapshot,
    PipelineStage,
    Priority,
)

logger = get_logger(__name__)

CONTRACTOR_COLUMNS = """
    id, uei_number, name, email, naics_code, state, business_type,
    registration_date, cage_code, score, priority, pipeline_stage,
    trial_start, trial_end, contact_attempts, last_contact, offer_code,
    is_test, version, created_at, synced_at
"""

# Columns a pipeline transition is allowed to write
TRANSITION_COLUMNS = frozenset(
    {"pipeline_stage", "score", "priority", "trial_start", "trial_end", "offer_code", "last_contact"}
)


@dataclass(slots=True)
class TargetSelection:
    """Which contractors a campaign should consider."""

    contractor_ids: list[str] | None = None
    naics_prefix: str | None = None
    states: list[str] | None = None
    stages: list[PipelineStage] | None = None
    min_score: int | None = None
    limit: int = 100


def row_to_contractor(row: dict | None) -> Contractor | None:
    if not row:
        return None
    data = dict(row)
    data["id"] = str(data["id"])
    data.pop("inserted", None)
    return Contractor(**data)


class ContractorRepository:
    """Thin SQL wrappers for contractor reads and single-row writes."""

    @staticmethod
    async def get(contractor_id: str) -> Contractor | None:
        row = await fetch_one(
            f"SELECT {CONTRACTOR_COLUMNS} FROM contractors WHERE id = %s", (contractor_id,)
        )
        return row_to_contractor(row)

    @staticmethod
    async def get_by_email(email: str) -> Contractor | None:
        row = await fetch_one(
            f"""
            SELECT {CONTRACTOR_COLUMNS}
            FROM contractors
            WHERE LOWER(email) = LOWER(%s)
            ORDER BY created_at
            LIMIT 1
            """,
            (email,),
        )
        return row_to_contractor(row)

    @staticmethod
    async def upsert_snapshot(
        snapshot: ContractorSnapshot, score: int, priority: Priority, synced_at: datetime
    ) -> tuple[Contractor, bool]:
        """
        Insert or refresh a contractor by UEI.

        Registry fields and score are overwritten on conflict; pipeline stage,
        trial window and contact counters are never touched by a sync.
        Returns (contractor, created).
        """
        query = f"""
            INSERT INTO contractors (
                uei_number, name, email, naics_code, state, business_type,
                registration_date, cage_code, sam_gov_id, score, priority,
                pipeline_stage, synced_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 'new', %s)
            ON CONFLICT (uei_number) DO UPDATE SET
                name = EXCLUDED.name,
                email = COALESCE(EXCLUDED.email, contractors.email),
                naics_code = EXCLUDED.naics_code,
                state = EXCLUDED.state,
                business_type = EXCLUDED.business_type,
                registration_date = EXCLUDED.registration_date,
                cage_code = EXCLUDED.cage_code,
                sam_gov_id = EXCLUDED.sam_gov_id,
                score = EXCLUDED.score,
                priority = EXCLUDED.priority,
                synced_at = EXCLUDED.synced_at,
                updated_at = NOW(),
                version = contractors.version + 1
            RETURNING {CONTRACTOR_COLUMNS}, (xmax = 0) AS inserted
        """
        row = await fetch_one(
            query,
            (
                snapshot.uei_number,
                snapshot.name,
                snapshot.email,
                snapshot.naics_code,
                snapshot.state,
                snapshot.business_type,
                snapshot.registration_date,
                snapshot.cage_code,
                snapshot.sam_gov_id,
                score,
                priority.value,
                synced_at,
            ),
        )
        created = bool(row["inserted"])
        return row_to_contractor(row), created

    @staticmethod
    async def apply_transition(
        contractor_id: str, expected_version: int, changes: dict[str, Any]
    ) -> Contractor | None:
        """
        Write stage/score changes only if the row still has expected_version.
        Returns the updated contractor, or None on a version miss.
        """
        unknown = set(changes) - TRANSITION_COLUMNS
        if unknown:
            raise ValueError(f"Columns not writable by a transition: {sorted(unknown)}")

        # Column names come from TRANSITION_COLUMNS only
        assignments = ", ".join(f"{column} = %s" for column in changes)
        query = f"""
            UPDATE contractors
            SET {assignments}, version = version + 1, updated_at = NOW()
            WHERE id = %s AND version = %s
            RETURNING {CONTRACTOR_COLUMNS}
        """

        params = tuple(
            value.value if isinstance(value, (PipelineStage, Priority)) else value
            for value in changes.values()
        ) + (contractor_id, expected_version)
        row = await fetch_one(query, params)
        return row_to_contractor(row)

    @staticmethod
    async def record_contact(contractor_id: str, contacted_at: datetime) -> None:
        """Atomically bump the contact-attempt counter and last-contact time."""
        await execute_query(
            """
            UPDATE contractors
            SET contact_attempts = contact_attempts + 1,
                last_contact = %s,
                version = version + 1,
                updated_at = NOW()
            WHERE id = %s
            """,
            (contacted_at, contractor_id),
        )

    @staticmethod
    async def find_candidates(selection: TargetSelection) -> list[Contractor]:
        """Contractors matching a campaign selection, highest score first."""
        clauses = ["is_test = FALSE"]
        params: list[Any] = []

        if selection.contractor_ids:
            clauses.append("id = ANY(%s::uuid[])")
            params.append(list(selection.contractor_ids))
        else:
            clauses.append("pipeline_stage NOT IN ('converted', 'unsubscribed')")
        if selection.naics_prefix:
            clauses.append("naics_code LIKE %s")
            params.append(f"{selection.naics_prefix}%")
        if selection.states:
            clauses.append("state = ANY(%s)")
            params.append([s.upper() for s in selection.states])
        if selection.stages:
            clauses.append("pipeline_stage = ANY(%s)")
            params.append([PipelineStage(s).value for s in selection.stages])
        if selection.min_score is not None:
            clauses.append("score >= %s")
            params.append(selection.min_score)

        params.append(selection.limit)
        rows = await fetch_all(
            f"""
            SELECT {CONTRACTOR_COLUMNS}
            FROM contractors
            WHERE {" AND ".join(clauses)}
            ORDER BY score DESC, created_at
            LIMIT %s
            """,
            tuple(params),
        )
        return [row_to_contractor(row) for row in rows]

    @staticmethod
    async def list_expired_trials(now: datetime) -> list[Contractor]:
        rows = await fetch_all(
            f"""
            SELECT {CONTRACTOR_COLUMNS}
            FROM contractors
            WHERE pipeline_stage = 'converted'
              AND trial_end IS NOT NULL
              AND trial_end < %s
              AND is_test = FALSE
            """,
            (now,),
        )
        return [row_to_contractor(row) for row in rows]

    @staticmethod
    async def list_trials_ending_between(start: datetime, end: datetime) -> list[Contractor]:
        rows = await fetch_all(
            f"""
            SELECT {CONTRACTOR_COLUMNS}
            FROM contractors
            WHERE pipeline_stage = 'converted'
              AND trial_end BETWEEN %s AND %s
              AND is_test = FALSE
            """,
            (start, end),
        )
        return [row_to_contractor(row) for row in rows]

    @staticmethod
    async def distinct_naics_codes(limit: int = 50) -> list[str]:
        rows = await fetch_all(
            """
            SELECT naics_code, COUNT(*) AS n
            FROM contractors
            WHERE naics_code IS NOT NULL
              AND pipeline_stage NOT IN ('converted', 'unsubscribed')
            GROUP BY naics_code
            ORDER BY n DESC
            LIMIT %s
            """,
            (limit,),
        )
        return [row["naics_code"] for row in rows]
