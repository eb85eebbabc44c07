"""
api/routes/groups.py
--------------------
API-key authenticated group endpoints.

GET  /groups      Groups the connected account participates in
POST /send-group  Send text to one of those groups
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from gateway.dependencies import get_api_tenant, get_delivery_service, get_session_manager
from gateway.models.tenant import Tenant
from gateway.schemas.group import GroupListResponse, GroupRead, GroupSendRequest, GroupSendResult
from gateway.services.delivery_service import DeliveryService
from gateway.sessions.addressing import to_group_address
from gateway.sessions.manager import SessionManager

router = APIRouter(tags=["Groups"])


@router.get("/groups", response_model=GroupListResponse, summary="List groups")
async def list_groups(
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> GroupListResponse:
    groups = await manager.list_groups(tenant.id)
    return GroupListResponse(
        total=len(groups),
        groups=[GroupRead.model_validate(g) for g in groups],
    )


@router.post("/send-group", response_model=GroupSendResult, summary="Send a message to a group")
async def send_group(
    body: GroupSendRequest,
    tenant: Annotated[Tenant, Depends(get_api_tenant)],
    delivery: Annotated[DeliveryService, Depends(get_delivery_service)],
) -> GroupSendResult:
    sent, latency_ms = await delivery.send_group(tenant.id, body.group_id, body.text)
    return GroupSendResult(
        group_id=to_group_address(body.group_id),
        message_id=sent.message_id,
        timestamp=sent.timestamp,
        response_time_ms=latency_ms,
    )
