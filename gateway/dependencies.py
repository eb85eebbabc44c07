"""
dependencies.py
---------------
FastAPI dependency injection functions for authentication and shared services.

Three kinds of callers:
  1. Tenant portal   → JWT from POST /login, role "tenant"
  2. Admin panel     → JWT from POST /admin/login, role "admin"
  3. API clients     → "Authorization: Bearer <api_key>" on the send endpoints

JWTs are always re-verified against the database so deleted or suspended
accounts are rejected even while their token is still unexpired.

The session manager and delivery service are process-wide and live on
app.state (built in main.lifespan); tests swap them via dependency_overrides.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer, OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.logging import bind_tenant, get_logger
from gateway.core.security import ROLE_ADMIN, ROLE_TENANT, decode_access_token
from gateway.db.session import get_db
from gateway.models.admin import AdminUser
from gateway.models.tenant import Tenant
from gateway.services.admin_service import AdminService
from gateway.services.delivery_service import DeliveryService
from gateway.services.tenant_service import TenantService
from gateway.sessions.manager import SessionManager

logger = get_logger(__name__)

# tokenUrl must match the login endpoint path
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login")
admin_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/admin/login", scheme_name="AdminToken")
api_key_scheme = HTTPBearer(auto_error=False, scheme_name="ApiKey")

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


def _subject_for_role(token: str, role: str) -> str:
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        logger.warning("JWT decode failed", error=str(exc))
        raise _CREDENTIALS_EXCEPTION
    subject: Optional[str] = payload.get("sub")
    if not subject or payload.get("role") != role:
        raise _CREDENTIALS_EXCEPTION
    return subject


async def get_current_tenant(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Tenant:
    """
    Decode the portal JWT, then load and return the Tenant.
    Raises 401 if the token is invalid or the tenant no longer exists,
    403 if the tenant is suspended.
    """
    tenant_id = _subject_for_role(token, ROLE_TENANT)
    tenant = await TenantService.get_tenant_by_id(db, tenant_id)
    if tenant is None:
        logger.warning("Tenant from valid JWT not found in DB", tenant_id=tenant_id)
        raise _CREDENTIALS_EXCEPTION
    if not tenant.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant is suspended")
    bind_tenant(tenant.id)
    return tenant


async def get_current_admin(
    token: Annotated[str, Depends(admin_oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AdminUser:
    admin_id = _subject_for_role(token, ROLE_ADMIN)
    admin = await AdminService.get_admin_by_id(db, admin_id)
    if admin is None:
        logger.warning("Admin from valid JWT not found in DB", admin_id=admin_id)
        raise _CREDENTIALS_EXCEPTION
    return admin


async def get_api_tenant(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(api_key_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Tenant:
    """
    Resolve the tenant from its API key.
    401 when no key is sent, 403 when the key is unknown or the tenant suspended.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    tenant = await TenantService.get_tenant_by_api_key(db, credentials.credentials)
    if tenant is None:
        logger.warning("Rejected unknown API key")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
    if not tenant.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant is suspended")
    bind_tenant(tenant.id)
    return tenant


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_delivery_service(request: Request) -> DeliveryService:
    return request.app.state.delivery_service
