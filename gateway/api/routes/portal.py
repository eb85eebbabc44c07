"""
api/routes/portal.py
--------------------
Tenant self-service: pairing, connection status and own message log.

GET  /my-status      Connection state; starts the session if needed and
                     returns the QR to scan while awaiting pairing.
POST /my-disconnect  Log the account out and forget its credentials.
GET  /my-messages    Paginated message log of the tenant.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.logging import get_logger
from gateway.db.session import get_db
from gateway.dependencies import get_current_tenant, get_session_manager
from gateway.models.message import DeliveryStatus
from gateway.models.tenant import Tenant
from gateway.schemas.message import MessageListResponse, MessageLogRead
from gateway.schemas.session import DisconnectResponse, PortalStatusResponse
from gateway.services.message_service import MessageService
from gateway.sessions.errors import SessionError
from gateway.sessions.manager import SessionManager

logger = get_logger(__name__)

router = APIRouter(tags=["Portal"])


@router.get(
    "/my-status",
    response_model=PortalStatusResponse,
    summary="Connection status and pairing QR",
)
async def my_status(
    tenant: Annotated[Tenant, Depends(get_current_tenant)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> PortalStatusResponse:
    try:
        await manager.ensure_initialized(tenant.id)
    except SessionError as exc:
        # Still report whatever state the session is in
        logger.warning("Portal could not start session", tenant_id=tenant.id, error=exc.detail)

    qr = await manager.get_pairing_challenge(tenant.id, wait=True)
    current = manager.get_status(tenant.id)
    return PortalStatusResponse(
        tenant_id=tenant.id,
        connected=current.connected,
        state=current.state.value,
        phone=current.identity,
        qr=qr,
    )


@router.post(
    "/my-disconnect",
    response_model=DisconnectResponse,
    summary="Log out the WhatsApp account",
)
async def my_disconnect(
    tenant: Annotated[Tenant, Depends(get_current_tenant)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> DisconnectResponse:
    had_session = await manager.logout(tenant.id)
    logger.info("Tenant disconnected from portal", tenant_id=tenant.id, had_session=had_session)
    return DisconnectResponse(tenant_id=tenant.id, had_session=had_session)


@router.get(
    "/my-messages",
    response_model=MessageListResponse,
    summary="List this tenant's sent and failed messages",
)
async def my_messages(
    tenant: Annotated[Tenant, Depends(get_current_tenant)],
    db: Annotated[AsyncSession, Depends(get_db)],
    status: Optional[DeliveryStatus] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> MessageListResponse:
    total, items = await MessageService.list_messages(
        db, tenant.id, status=status, skip=offset, limit=limit
    )
    return MessageListResponse(
        total=total,
        limit=limit,
        offset=offset,
        items=[MessageLogRead.model_validate(m) for m in items],
    )
