import json

from lead_engine.db.helpers import execute_query
from lead_engine.models.domain.sync_domain import SyncRunRecord


class SyncRunRepository:

    @staticmethod
    async def create(record: SyncRunRecord) -> None:
        await execute_query(
            """
            INSERT INTO sync_runs (
                kind, fetched, new_count, updated_count, skipped,
                date_from, date_to, status, duration_ms, error, errors
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb)
            """,
            (
                record.kind.value,
                record.fetched,
                record.new_count,
                record.updated_count,
                record.skipped,
                record.date_from,
                record.date_to,
                record.status.value,
                record.duration_ms,
                record.error,
                json.dumps(record.errors),
            ),
        )
