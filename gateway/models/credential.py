"""
models/credential.py
--------------------
Resume material for protocol sessions, stored as an opaque blob per tenant.

No foreign key to tenants: material is purged explicitly by the session
core, and a stale row for a deleted tenant is harmless.
"""

from sqlalchemy import LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from gateway.db.base import Base, TimestampMixin


class SessionCredential(Base, TimestampMixin):
    __tablename__ = "session_credentials"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    material: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    def __repr__(self) -> str:
        return f"<SessionCredential tenant_id={self.tenant_id} size={len(self.material)}>"
