"""
CRM activity log. Rows carrying a dedupe_key double as the idempotency ledger
for engagement signals: the unique index makes the first writer win.
"""

import json

from lead_engine.db.helpers import execute_query, fetch_one
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.campaign_domain import Activity

logger = get_logger(__name__)


class ActivityRepository:

    @staticmethod
    async def record(activity: Activity) -> bool:
        """
        Insert an activity row.

        Returns False when a row with the same dedupe_key already exists,
        which callers treat as "signal already applied".
        """
        row = await fetch_one(
            """
            INSERT INTO crm_activities (contractor_id, type, description, metadata, dedupe_key, created_by)
            VALUES (%s, %s, %s, %s::jsonb, %s, %s)
            ON CONFLICT (dedupe_key) DO NOTHING
            RETURNING id
            """,
            (
                activity.contractor_id,
                activity.type.value,
                activity.description,
                json.dumps(activity.metadata, default=str),
                activity.dedupe_key,
                activity.created_by,
            ),
        )
        if row is None:
            logger.debug("Duplicate activity skipped", dedupe_key=activity.dedupe_key)
            return False
        return True

    @staticmethod
    async def release(dedupe_key: str) -> None:
        """Drop a claimed dedupe key so a failed transition can be retried."""
        await execute_query("DELETE FROM crm_activities WHERE dedupe_key = %s", (dedupe_key,))
