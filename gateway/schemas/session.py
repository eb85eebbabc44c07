"""
schemas/session.py
------------------
Connection status as reported to tenants and API clients.
"""

from typing import Optional

from pydantic import BaseModel


class ConnectionStatusResponse(BaseModel):
    tenant_id: str
    connected: bool
    state: str
    phone: Optional[str] = None


class PortalStatusResponse(ConnectionStatusResponse):
    qr: Optional[str] = None  # data:image/png;base64,... while awaiting pairing


class DisconnectResponse(BaseModel):
    tenant_id: str
    had_session: bool
