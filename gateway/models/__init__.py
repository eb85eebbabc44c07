"""
models/__init__.py
------------------
Re-export all models so table creation can import Base and discover
all tables via a single import:

    from gateway.models import Base
"""

from gateway.db.base import Base
from gateway.models.tenant import Tenant, TenantStatus
from gateway.models.admin import AdminUser
from gateway.models.message import DeliveryStatus, MessageKind, MessageLog
from gateway.models.credential import SessionCredential
from gateway.models.webhook import Webhook

__all__ = [
    "Base",
    "Tenant",
    "TenantStatus",
    "AdminUser",
    "MessageLog",
    "MessageKind",
    "DeliveryStatus",
    "SessionCredential",
    "Webhook",
]
