"""
services/audit_service.py
-------------------------
Writes one message_logs row per send attempt.

The row is written in its own database session, so a failed request
still leaves its audit trail after the request's session rolls back.
A failure to write is logged and swallowed: auditing never changes the
outcome the client sees.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.core.logging import get_logger
from gateway.models.message import MessageLog
from gateway.sessions.audit import AuditEntry

logger = get_logger(__name__)


def _to_row(entry: AuditEntry) -> MessageLog:
    return MessageLog(
        tenant_id=entry.tenant_id,
        phone_number=entry.destination,
        message_type=entry.kind.value,
        message_text=entry.message_text,
        file_url=entry.file_url,
        caption=entry.caption,
        status=entry.status.value,
        error_message=entry.error_detail,
        message_id=entry.provider_message_id,
        timestamp_sent=entry.sent_at,
        response_time_ms=entry.latency_ms,
    )


class DatabaseAuditLogger:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, entry: AuditEntry) -> None:
        try:
            async with self._session_factory() as db:
                db.add(_to_row(entry))
                await db.commit()
        except Exception as exc:
            logger.error(
                "Could not write message log",
                tenant_id=entry.tenant_id,
                status=entry.status.value,
                error=str(exc),
                exc_info=True,
            )
