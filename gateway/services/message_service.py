"""
services/message_service.py
----------------------------
Read side of the message audit log: listings, phone history and stats.

Critical security invariant:
  Every tenant-facing query MUST include tenant_id in the WHERE clause.
  Only the admin listing may omit it.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.logging import get_logger
from gateway.models.message import DeliveryStatus, MessageLog
from gateway.sessions.addressing import normalize_phone

logger = get_logger(__name__)


class MessageService:

    @staticmethod
    async def _page(
        db: AsyncSession,
        filters: list,
        skip: int,
        limit: int,
    ) -> tuple[int, list[MessageLog]]:
        count_result = await db.execute(
            select(func.count()).select_from(MessageLog).where(*filters)
        )
        total = count_result.scalar_one()

        # Newest first; id breaks ties within the same second
        result = await db.execute(
            select(MessageLog)
            .where(*filters)
            .order_by(MessageLog.created_at.desc(), MessageLog.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return total, list(result.scalars().all())

    @staticmethod
    async def list_messages(
        db: AsyncSession,
        tenant_id: str,
        status: Optional[DeliveryStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[int, list[MessageLog]]:
        """
        Paginated message log, strictly scoped to one tenant.

        Returns:
            (total_count, page_of_messages)
        """
        filters = [MessageLog.tenant_id == tenant_id]
        if status is not None:
            filters.append(MessageLog.status == status.value)
        return await MessageService._page(db, filters, skip, limit)

    @staticmethod
    async def list_all_messages(
        db: AsyncSession,
        tenant_id: Optional[str] = None,
        status: Optional[DeliveryStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[int, list[MessageLog]]:
        """Admin view across tenants, optionally narrowed to one."""
        filters = []
        if tenant_id is not None:
            filters.append(MessageLog.tenant_id == tenant_id)
        if status is not None:
            filters.append(MessageLog.status == status.value)
        return await MessageService._page(db, filters, skip, limit)

    @staticmethod
    async def messages_by_phone(
        db: AsyncSession,
        tenant_id: str,
        phone: str,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[int, list[MessageLog]]:
        """
        History for one recipient. Matches on the digits only, so
        "+57 300-111 2222" finds rows logged as "573001112222".

        Raises:
            InvalidDestination: if `phone` has no digits.
        """
        digits = normalize_phone(phone)
        filters = [
            MessageLog.tenant_id == tenant_id,
            MessageLog.phone_number.like(f"%{digits}%"),
        ]
        return await MessageService._page(db, filters, skip, limit)

    @staticmethod
    async def stats(db: AsyncSession, tenant_id: str, days: int = 7) -> dict:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        base = [MessageLog.tenant_id == tenant_id, MessageLog.created_at >= since]

        result = await db.execute(
            select(MessageLog.status, func.count())
            .where(*base)
            .group_by(MessageLog.status)
        )
        by_status = {row[0]: row[1] for row in result.all()}
        sent = by_status.get(DeliveryStatus.sent.value, 0)
        failed = by_status.get(DeliveryStatus.failed.value, 0)
        total = sent + failed

        avg_result = await db.execute(
            select(func.avg(MessageLog.response_time_ms)).where(*base)
        )
        avg_ms = avg_result.scalar_one_or_none()

        day = func.date(MessageLog.created_at)
        daily_result = await db.execute(
            select(day, func.count()).where(*base).group_by(day).order_by(day)
        )
        daily = [{"date": row[0], "count": row[1]} for row in daily_result.all()]

        return {
            "period_days": days,
            "total": total,
            "sent": sent,
            "failed": failed,
            "success_rate": round(sent / total * 100, 2) if total else 0.0,
            "avg_response_time_ms": int(round(avg_ms)) if avg_ms is not None else 0,
            "daily": daily,
        }
