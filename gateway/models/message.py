"""
models/message.py
-----------------
Message audit log model.

One row per send attempt, successful or not. Rows are only ever inserted:
nothing in the service updates or deletes them (tenant deletion cascades
at the database level).
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gateway.db.base import Base


class MessageKind(str, PyEnum):
    text = "text"
    file = "file"
    group = "group"


class DeliveryStatus(str, PyEnum):
    sent = "sent"
    failed = "failed"


class MessageLog(Base):
    __tablename__ = "message_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phone_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    message_type: Mapped[str] = mapped_column(String(10), nullable=False)
    message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    message_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    timestamp_sent: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="messages")  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<MessageLog id={self.id} tenant_id={self.tenant_id} "
            f"status={self.status}>"
        )
