"""
sessions/errors.py
------------------
Error taxonomy of the session core.

Every failure of a session operation is raised as one of these classes so
the HTTP layer can map it to a response and an audit row without
inspecting provider internals.
"""

from typing import Optional


class SessionError(Exception):
    """Base class; `detail` is safe to show to API clients."""

    default_detail = "Session error"

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class UnknownTenant(SessionError):
    default_detail = "Tenant not found"

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant '{tenant_id}' not found")


class NotConnected(SessionError):
    default_detail = "WhatsApp is not connected"


class InvalidDestination(SessionError):
    default_detail = "Destination is not a phone number or group id"


class SendFailed(SessionError):
    default_detail = "Message could not be sent"


class FetchFailed(SessionError):
    default_detail = "File could not be downloaded"


class InitializationFailed(SessionError):
    default_detail = "Connection could not be started"


class LoggedOutRemotely(SessionError):
    default_detail = "Session was logged out from the device"


class LookupFailed(SessionError):
    default_detail = "The network did not answer the query"
