"""
Follow-up tasks. The partial unique index uq_crm_tasks_open_label guarantees
at most one pending/overdue task per (contractor, label), so creation is a
plain INSERT ... ON CONFLICT DO NOTHING and safe under concurrent schedulers.
"""

from datetime import datetime

from lead_engine.db.helpers import execute_query, fetch_all, fetch_one
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.campaign_domain import FollowUpTask

logger = get_logger(__name__)

TASK_COLUMNS = """
    id, contractor_id, contractor_name, label, title, due_date, priority,
    assignee, status, notes, created_at, completed_at
"""


def row_to_task(row: dict | None) -> FollowUpTask | None:
    if not row:
        return None
    data = dict(row)
    data["id"] = str(data["id"])
    data["contractor_id"] = str(data["contractor_id"])
    return FollowUpTask(**data)


class TaskRepository:

    @staticmethod
    async def create_if_absent(task: FollowUpTask) -> bool:
        """Insert unless an open task with the same label exists. Returns created."""
        row = await fetch_one(
            """
            INSERT INTO crm_tasks (
                id, contractor_id, contractor_name, label, title, due_date,
                priority, assignee, status, notes
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (contractor_id, label) WHERE status IN ('pending', 'overdue')
            DO NOTHING
            RETURNING id
            """,
            (
                task.id,
                task.contractor_id,
                task.contractor_name,
                task.label,
                task.title,
                task.due_date,
                task.priority,
                task.assignee,
                task.status.value,
                task.notes,
            ),
        )
        return row is not None

    @staticmethod
    async def mark_overdue(now: datetime) -> int:
        """Flip pending tasks past their due date. Re-running is a no-op."""
        return await execute_query(
            "UPDATE crm_tasks SET status = 'overdue' WHERE status = 'pending' AND due_date < %s",
            (now,),
        )

    @staticmethod
    async def mark_done(task_id: str, now: datetime) -> FollowUpTask | None:
        row = await fetch_one(
            f"""
            UPDATE crm_tasks
            SET status = 'done', completed_at = COALESCE(completed_at, %s)
            WHERE id = %s
            RETURNING {TASK_COLUMNS}
            """,
            (now, task_id),
        )
        return row_to_task(row)

    @staticmethod
    async def list_open(contractor_id: str) -> list[FollowUpTask]:
        rows = await fetch_all(
            f"""
            SELECT {TASK_COLUMNS}
            FROM crm_tasks
            WHERE contractor_id = %s AND status IN ('pending', 'overdue')
            ORDER BY due_date
            """,
            (contractor_id,),
        )
        return [row_to_task(row) for row in rows]
