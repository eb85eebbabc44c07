"""
schemas/tenant.py
-----------------
Pydantic request/response models for Tenant.

Naming convention:
  TenantCreate  → inbound request body (admin)
  TenantRead    → outbound response body (never exposes the password hash)
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from gateway.models.tenant import TenantStatus

_TENANT_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class TenantCreate(BaseModel):
    id: str = Field(
        ...,
        min_length=2,
        max_length=64,
        examples=["acme"],
        description="Client id; also names the tenant's messaging session",
    )
    name: str = Field(..., min_length=2, max_length=255, examples=["Acme Corp"])
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("id")
    @classmethod
    def check_id(cls, v: str) -> str:
        v = v.strip()
        if not _TENANT_ID.match(v):
            raise ValueError("id may only contain letters, digits, '.', '_' and '-'")
        return v

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class TenantUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    status: Optional[TenantStatus] = None


class TenantRead(BaseModel):
    id: str
    name: str
    email: str
    api_key: str
    status: str
    whatsapp_connected: bool
    phone_number: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TenantProfile(BaseModel):
    """What a tenant sees about itself in the portal."""
    id: str
    name: str
    email: str
    api_key: str
    phone_number: Optional[str] = None
    whatsapp_connected: bool

    model_config = {"from_attributes": True}
