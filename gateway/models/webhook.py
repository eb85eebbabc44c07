"""
models/webhook.py
-----------------
Where a tenant wants inbound events delivered. One registration per tenant;
registering again replaces the previous one.
"""

from sqlalchemy import JSON, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gateway.db.base import Base, TimestampMixin

DEFAULT_EVENTS = ["message"]


class Webhook(Base, TimestampMixin):
    __tablename__ = "webhooks"

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        primary_key=True,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="webhook")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Webhook tenant_id={self.tenant_id} url={self.url}>"
