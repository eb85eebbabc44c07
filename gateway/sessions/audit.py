"""
sessions/audit.py
-----------------
The narrow contract the delivery path uses to record send attempts.
Implemented by services/audit_service.DatabaseAuditLogger.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from gateway.models.message import DeliveryStatus, MessageKind


@dataclass(frozen=True)
class AuditEntry:
    tenant_id: str
    destination: str
    kind: MessageKind
    status: DeliveryStatus
    latency_ms: int
    message_text: Optional[str] = None
    file_url: Optional[str] = None
    caption: Optional[str] = None
    provider_message_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    error_detail: Optional[str] = None


class AuditLogger(Protocol):
    async def append(self, entry: AuditEntry) -> None:
        """Record one attempt. Must not raise."""
        ...
