"""
models/tenant.py
----------------
Tenant (client account) ORM model.

Each tenant owns exactly one messaging session and its own message history.
The primary key is the operator-chosen client id (e.g. "acme"); it is the
key the session registry and the credential store are indexed by.

whatsapp_connected / phone_number mirror the live session state so the
admin panel can list accounts without touching the session registry.
"""

from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gateway.db.base import Base, TimestampMixin


class TenantStatus(str, PyEnum):
    active = "active"
    suspended = "suspended"


class Tenant(Base, TimestampMixin):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False, index=True
    )
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TenantStatus.active.value
    )

    whatsapp_connected: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Relationships
    messages: Mapped[list["MessageLog"]] = relationship(  # noqa: F821
        "MessageLog", back_populates="tenant", cascade="all, delete-orphan"
    )
    webhook: Mapped[Optional["Webhook"]] = relationship(  # noqa: F821
        "Webhook", back_populates="tenant", cascade="all, delete-orphan", uselist=False
    )

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.active.value

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name} status={self.status}>"
