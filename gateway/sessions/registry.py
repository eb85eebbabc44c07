"""
sessions/registry.py
--------------------
Process-wide map TenantId -> ProtocolSession with atomic get-or-create.

Sessions are constructed synchronously and never initialized under the
lock, so a lookup for one tenant never waits on another tenant's
connection handshake. The registry subscribes to every session it creates
and forgets sessions that end logged out.
"""

import asyncio
from typing import Callable, Optional

from gateway.core.logging import get_logger
from gateway.sessions.events import SessionEvent, SessionLoggedOut
from gateway.sessions.session import ProtocolSession

logger = get_logger(__name__)

SessionFactory = Callable[[str], ProtocolSession]


class _RemovalObserver:
    """Drops a session from the registry once it reports a logout."""

    def __init__(self, registry: "SessionRegistry", session: ProtocolSession) -> None:
        self._registry = registry
        self._session = session

    async def on_session_event(self, event: SessionEvent) -> None:
        if isinstance(event, SessionLoggedOut):
            await self._registry.remove(event.tenant_id, expected=self._session)


class SessionRegistry:

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._sessions: dict[str, ProtocolSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._sessions

    def get(self, tenant_id: str) -> Optional[ProtocolSession]:
        """Existing session or None; never creates one."""
        return self._sessions.get(tenant_id)

    async def get_or_create(self, tenant_id: str) -> ProtocolSession:
        session = self._sessions.get(tenant_id)
        if session is not None:
            return session

        async with self._lock:
            session = self._sessions.get(tenant_id)
            if session is None:
                session = self._factory(tenant_id)
                session.subscribe(_RemovalObserver(self, session))
                self._sessions[tenant_id] = session
                logger.info("Session registered", tenant_id=tenant_id, total=len(self._sessions))
            return session

    async def remove(
        self, tenant_id: str, expected: Optional[ProtocolSession] = None
    ) -> Optional[ProtocolSession]:
        """
        Forget the tenant's session.

        With `expected`, only that exact instance is removed, so a late
        notification from a retired session cannot evict its replacement.
        """
        async with self._lock:
            current = self._sessions.get(tenant_id)
            if current is None or (expected is not None and current is not expected):
                return None
            del self._sessions[tenant_id]
        logger.info("Session removed", tenant_id=tenant_id, total=len(self._sessions))
        return current

    def list_active(self) -> list[tuple[str, ProtocolSession]]:
        """Snapshot of (tenant_id, session) pairs, in no particular order."""
        return list(self._sessions.items())
