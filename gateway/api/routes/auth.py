"""
api/routes/auth.py
------------------
Tenant portal authentication.

POST /login     Exchange email + password for a JWT access token.
                OAuth2 form data; the "username" field carries the email.
GET  /me        The authenticated tenant's profile (including its API key).
"""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.config import settings
from gateway.core.logging import get_logger
from gateway.core.security import ROLE_TENANT, create_access_token
from gateway.db.session import get_db
from gateway.dependencies import get_current_tenant
from gateway.models.tenant import Tenant
from gateway.schemas.auth import TokenResponse
from gateway.schemas.tenant import TenantProfile
from gateway.services.tenant_service import TenantService

logger = get_logger(__name__)

router = APIRouter(tags=["Authentication"])


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Tenant login, returns a JWT access token",
)
async def login(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TokenResponse:
    """
    Via curl/Postman: send as form data (not JSON):
        -d "username=you@email.com&password=yourpassword"
    """
    tenant = await TenantService.authenticate(db, form_data.username, form_data.password)
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not tenant.is_active:
        logger.warning("Suspended tenant attempted login", tenant_id=tenant.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant is suspended")

    expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(subject=tenant.id, role=ROLE_TENANT, expires_delta=expires)
    return TokenResponse(
        access_token=token,
        token_type="bearer",
        expires_in=int(expires.total_seconds()),
        tenant=TenantProfile.model_validate(tenant),
    )


@router.get(
    "/me",
    response_model=TenantProfile,
    summary="Get the currently authenticated tenant",
)
async def get_me(
    current_tenant: Annotated[Tenant, Depends(get_current_tenant)],
) -> TenantProfile:
    return TenantProfile.model_validate(current_tenant)
