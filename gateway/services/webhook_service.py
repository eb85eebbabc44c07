"""
services/webhook_service.py
---------------------------
Stores each tenant's webhook registration.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.logging import get_logger
from gateway.models.webhook import DEFAULT_EVENTS, Webhook
from gateway.schemas.webhook import WebhookCreate

logger = get_logger(__name__)


class WebhookService:

    @staticmethod
    async def register(db: AsyncSession, tenant_id: str, data: WebhookCreate) -> Webhook:
        """Create the tenant's webhook, or replace the one it has."""
        events = data.events or list(DEFAULT_EVENTS)
        webhook = await db.get(Webhook, tenant_id)
        if webhook is None:
            webhook = Webhook(tenant_id=tenant_id, url=str(data.url), events=events, status="active")
            db.add(webhook)
        else:
            webhook.url = str(data.url)
            webhook.events = events
            webhook.status = "active"
        await db.flush()
        await db.refresh(webhook)
        logger.info("Webhook registered", tenant_id=tenant_id, url=webhook.url, events=events)
        return webhook

    @staticmethod
    async def get_webhook(db: AsyncSession, tenant_id: str) -> Optional[Webhook]:
        return await db.get(Webhook, tenant_id)
