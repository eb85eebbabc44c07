"""
api/routes/admin.py
-------------------
Operator endpoints.

POST   /admin/login                Admin JWT
GET    /admin/tenants              All tenants with connection status
POST   /admin/tenants              Create a tenant (API key is generated)
PUT    /admin/tenants/{tenant_id}  Update name, email, password or status
DELETE /admin/tenants/{tenant_id}  Log out its session and delete it
GET    /admin/messages             Message log across tenants
"""

from datetime import timedelta
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.config import settings
from gateway.core.security import ROLE_ADMIN, create_access_token
from gateway.db.session import get_db
from gateway.dependencies import get_current_admin, get_session_manager
from gateway.models.admin import AdminUser
from gateway.models.message import DeliveryStatus
from gateway.schemas.auth import AdminTokenResponse
from gateway.schemas.message import MessageListResponse, MessageLogRead
from gateway.schemas.tenant import TenantCreate, TenantRead, TenantUpdate
from gateway.services.admin_service import AdminService
from gateway.services.message_service import MessageService
from gateway.services.tenant_service import TenantService
from gateway.sessions.manager import SessionManager

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/login", response_model=AdminTokenResponse, summary="Admin login")
async def admin_login(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AdminTokenResponse:
    admin = await AdminService.authenticate(db, form_data.username, form_data.password)
    if admin is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    expires = timedelta(minutes=settings.ADMIN_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(subject=admin.id, role=ROLE_ADMIN, expires_delta=expires)
    return AdminTokenResponse(
        access_token=token,
        expires_in=int(expires.total_seconds()),
        username=admin.username,
    )


@router.get("/tenants", response_model=list[TenantRead], summary="Admin: list tenants")
async def list_tenants(
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[AdminUser, Depends(get_current_admin)],
) -> list[TenantRead]:
    tenants = await TenantService.list_tenants(db)
    return [TenantRead.model_validate(t) for t in tenants]


@router.post(
    "/tenants",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    summary="Admin: create a tenant",
)
async def create_tenant(
    body: TenantCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[AdminUser, Depends(get_current_admin)],
) -> TenantRead:
    try:
        tenant = await TenantService.create_tenant(db, body)
        return TenantRead.model_validate(tenant)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.put(
    "/tenants/{tenant_id}",
    response_model=TenantRead,
    summary="Admin: update a tenant",
)
async def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[AdminUser, Depends(get_current_admin)],
) -> TenantRead:
    tenant = await TenantService.get_tenant_by_id(db, tenant_id)
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant '{tenant_id}' not found",
        )
    try:
        tenant = await TenantService.update_tenant(db, tenant, body)
        return TenantRead.model_validate(tenant)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.delete(
    "/tenants/{tenant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Admin: delete a tenant and its session",
)
async def delete_tenant(
    tenant_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[AdminUser, Depends(get_current_admin)],
    manager: Annotated[SessionManager, Depends(get_session_manager)],
) -> Response:
    tenant = await TenantService.get_tenant_by_id(db, tenant_id)
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant '{tenant_id}' not found",
        )
    await manager.logout(tenant_id)
    await TenantService.delete_tenant(db, tenant)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/messages",
    response_model=MessageListResponse,
    summary="Admin: message log across tenants",
)
async def list_messages(
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[AdminUser, Depends(get_current_admin)],
    tenant_id: Optional[str] = None,
    status: Optional[DeliveryStatus] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> MessageListResponse:
    total, items = await MessageService.list_all_messages(
        db, tenant_id=tenant_id, status=status, skip=offset, limit=limit
    )
    return MessageListResponse(
        total=total,
        limit=limit,
        offset=offset,
        items=[MessageLogRead.model_validate(m) for m in items],
    )
