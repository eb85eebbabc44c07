"""
sessions/events.py
------------------
Typed notifications a ProtocolSession publishes to its owners.

Owners (the registry, the tenant status recorder) subscribe an observer
instead of the session calling back into them through ad hoc attributes.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Union


@dataclass(frozen=True)
class SessionConnected:
    tenant_id: str
    identity: str


@dataclass(frozen=True)
class SessionDisconnected:
    tenant_id: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class SessionLoggedOut:
    """remote=True: the device unpaired us. remote=False: explicit logout()."""

    tenant_id: str
    remote: bool


SessionEvent = Union[SessionConnected, SessionDisconnected, SessionLoggedOut]


class SessionObserver(Protocol):
    async def on_session_event(self, event: SessionEvent) -> None:
        ...
