"""
schemas/auth.py
---------------
Token responses for the tenant portal and the admin panel.
"""

from pydantic import BaseModel

from gateway.schemas.tenant import TenantProfile


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    tenant: TenantProfile


class AdminTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
