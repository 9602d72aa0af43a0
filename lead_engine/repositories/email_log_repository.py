"""
Append-only log of campaign sends. Only the status column moves after insert,
and only forward along EMAIL_STATUS_PREDECESSORS.
"""

from lead_engine.db.helpers import execute_query, fetch_one
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.campaign_domain import (
    EMAIL_STATUS_PREDECESSORS,
    CampaignSend,
    EmailStatus,
)

logger = get_logger(__name__)

EMAIL_LOG_COLUMNS = """
    id, contractor_id, subject, body, campaign_type, campaign_name, offer_code,
    status, provider_message_id, error, sent_at
"""


class EmailLogRepository:

    @staticmethod
    async def create(send: CampaignSend) -> None:
        await execute_query(
            """
            INSERT INTO email_logs (
                id, contractor_id, subject, body, campaign_type, campaign_name,
                offer_code, status, provider_message_id, error, sent_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                send.id,
                send.contractor_id,
                send.subject,
                send.body,
                send.campaign_type.value,
                send.campaign_name,
                send.offer_code,
                send.status.value,
                send.provider_message_id,
                send.error,
                send.sent_at,
            ),
        )
        logger.debug("Email log written", message_id=send.id, status=send.status.value)

    @staticmethod
    async def get(message_id: str) -> CampaignSend | None:
        row = await fetch_one(
            f"SELECT {EMAIL_LOG_COLUMNS} FROM email_logs WHERE id = %s", (message_id,)
        )
        if not row:
            return None
        data = dict(row)
        data["id"] = str(data["id"])
        data["contractor_id"] = str(data["contractor_id"])
        return CampaignSend(**data)

    @staticmethod
    async def advance_status(message_id: str, status: EmailStatus) -> bool:
        """Move a log row forward; False when the row is missing or already past status."""
        allowed = [s.value for s in EMAIL_STATUS_PREDECESSORS.get(status, ())]
        if not allowed:
            return False
        updated = await execute_query(
            """
            UPDATE email_logs
            SET status = %s, updated_at = NOW()
            WHERE id = %s AND status = ANY(%s)
            """,
            (status.value, message_id, allowed),
        )
        return updated > 0
