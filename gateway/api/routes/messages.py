"""
api/routes/messages.py
----------------------
API-key authenticated endpoints for integrations.

POST /send               Send text, or a document when "url" is set
POST /v2/sendMessage     Same as /send (path used by older clients)
POST /send-bulk          Same content to many recipients, paced
POST /verify             Is a number registered on WhatsApp
GET  /status             Connection status of the key's tenant
GET  /profile-picture    Profile picture URL of a contact (null if hidden)
GET  /messages-by-phone  Message history for one recipient
GET  /stats              Delivery statistics for the last N days

Session failures propagate as SessionError and are turned into HTTP
responses by the handler registered in main.py.
"""

from math import ceil
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.db.session import get_db
from gateway.dependencies import get_api_tenant, get_delivery_service, get_session_manager
from gateway.models.tenant import Tenant
from gateway.schemas.message import (
    BulkItemResult,
    BulkSendRequest,
    BulkSendResponse,
    MessageLogRead,
    PhoneHistoryResponse,
    ProfilePictureResponse,
    SendRequest,
    SendResult,
    StatsResponse,
    VerifyRequest,
    VerifyResponse,
)
from gateway.schemas.session import ConnectionStatusResponse
from gateway.services.delivery_service import DeliveryService
from gateway.services.message_service import MessageService
from gateway.sessions.addressing import normalize_phone, to_address
from gateway.sessions.manager import SessionManager

router = APIRouter(tags=["Messages"])


@router.post("/send", response_model=SendResult, summary="Send a message or document")
@router.post("/v2/sendMessage", response_model=SendResult, include_in_schema=False)
async def send(
    body: SendRequest,
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    delivery: Annotated[DeliveryService, Depends(get_delivery_service)],
) -> SendResult:
    sent, latency_ms = await delivery.send(
        tenant.id,
        body.phone,
        text=body.text,
        url=body.url,
        filename=body.filename,
        caption=body.caption,
    )
    return SendResult(
        phone=normalize_phone(body.phone),
        message_id=sent.message_id,
        timestamp=sent.timestamp,
        response_time_ms=latency_ms,
    )


@router.post("/send-bulk", response_model=BulkSendResponse, summary="Send to many recipients")
async def send_bulk(
    body: BulkSendRequest,
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    delivery: Annotated[DeliveryService, Depends(get_delivery_service)],
) -> BulkSendResponse:
    results = await delivery.send_bulk(
        tenant.id,
        body.phones,
        text=body.text,
        url=body.url,
        filename=body.filename,
        caption=body.caption,
        delay=body.delay,
    )
    sent = sum(1 for r in results if r["success"])
    return BulkSendResponse(
        total=len(results),
        sent=sent,
        failed=len(results) - sent,
        results=[BulkItemResult(**r) for r in results],
    )


@router.post("/verify", response_model=VerifyResponse, summary="Check a number is on WhatsApp")
async def verify(
    body: VerifyRequest,
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> VerifyResponse:
    exists = await manager.verify(tenant.id, body.phone)
    return VerifyResponse(
        phone=normalize_phone(body.phone),
        exists=exists,
        jid=to_address(body.phone) if exists else None,
    )


@router.get("/status", response_model=ConnectionStatusResponse, summary="Connection status")
async def connection_status(
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> ConnectionStatusResponse:
    current = manager.get_status(tenant.id)
    return ConnectionStatusResponse(
        tenant_id=tenant.id,
        connected=current.connected,
        state=current.state.value,
        phone=current.identity,
    )


@router.get(
    "/profile-picture",
    response_model=ProfilePictureResponse,
    summary="Profile picture of a contact",
)
async def profile_picture(
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
    phone: Optional[str] = None,
    phonenumber: Optional[str] = None,
) -> ProfilePictureResponse:
    raw = phone or phonenumber
    if not raw:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="phone is required")
    url = await manager.profile_picture(tenant.id, raw)
    return ProfilePictureResponse(phone=normalize_phone(raw), profile_picture=url)


@router.get(
    "/messages-by-phone",
    response_model=PhoneHistoryResponse,
    summary="Message history for one recipient",
)
async def messages_by_phone(
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    db: Annotated[AsyncSession, Depends(get_db)],
    phone: str = Query(..., min_length=1),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
) -> PhoneHistoryResponse:
    total, items = await MessageService.messages_by_phone(
        db, tenant.id, phone, skip=(page - 1) * page_size, limit=page_size
    )
    return PhoneHistoryResponse(
        phone=normalize_phone(phone),
        count=total,
        page=page,
        page_count=ceil(total / page_size) if total else 0,
        items=[MessageLogRead.model_validate(m) for m in items],
    )


@router.get("/stats", response_model=StatsResponse, summary="Delivery statistics")
async def stats(
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    db: Annotated[AsyncSession, Depends(get_db)],
    days: int = Query(default=7, ge=1, le=90),
) -> StatsResponse:
    return StatsResponse(**await MessageService.stats(db, tenant.id, days=days))
