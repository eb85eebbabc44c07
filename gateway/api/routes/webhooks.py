"""
api/routes/webhooks.py
----------------------
Webhook registration for the API key's tenant.

POST /webhook  Register (or replace) where inbound events should be sent
GET  /webhook  The current registration
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.db.session import get_db
from gateway.dependencies import get_api_tenant
from gateway.models.tenant import Tenant
from gateway.schemas.webhook import WebhookCreate, WebhookRead
from gateway.services.webhook_service import WebhookService

router = APIRouter(tags=["Webhooks"])


@router.post("/webhook", response_model=WebhookRead, summary="Register a webhook")
async def register_webhook(
    body: WebhookCreate,
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> WebhookRead:
    webhook = await WebhookService.register(db, tenant.id, body)
    return WebhookRead.model_validate(webhook)


@router.get("/webhook", response_model=WebhookRead, summary="Current webhook")
async def get_webhook(
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> WebhookRead:
    webhook = await WebhookService.get_webhook(db, tenant.id)
    if webhook is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No webhook registered")
    return WebhookRead.model_validate(webhook)
