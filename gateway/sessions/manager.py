"""
sessions/manager.py
-------------------
SessionManager: the tenant-keyed interface the HTTP layer calls.

It resolves tenants through the TenantDirectory (unknown ids fail with
UnknownTenant before anything is created), obtains sessions from the
registry, and delegates to them. It never writes audit rows; callers do.
"""

from typing import Iterable, Optional, Protocol

import httpx

from gateway.core.config import Settings
from gateway.core.logging import get_logger
from gateway.providers.base import GroupInfo, ProtocolClient, SentMessage
from gateway.sessions.credentials import CredentialStore
from gateway.sessions.errors import UnknownTenant
from gateway.sessions.events import SessionObserver
from gateway.sessions.registry import SessionRegistry
from gateway.sessions.session import ConnectionState, ProtocolSession, SessionStatus

logger = get_logger(__name__)


class TenantDirectory(Protocol):
    async def exists(self, tenant_id: str) -> bool:
        ...

    async def active_tenant_ids(self) -> list[str]:
        ...


class SessionManager:

    def __init__(
        self,
        registry: SessionRegistry,
        directory: TenantDirectory,
        credentials: CredentialStore,
        pairing_wait: float = 5.0,
    ) -> None:
        self.registry = registry
        self.directory = directory
        self._credentials = credentials
        self._pairing_wait = pairing_wait

    async def session_for(self, tenant_id: str) -> ProtocolSession:
        session = self.registry.get(tenant_id)
        if session is None:
            if not await self.directory.exists(tenant_id):
                raise UnknownTenant(tenant_id)
            session = await self.registry.get_or_create(tenant_id)
        return session

    async def ensure_initialized(self, tenant_id: str) -> ProtocolSession:
        session = await self.session_for(tenant_id)
        await session.ensure_initialized()
        return session

    def get_status(self, tenant_id: str) -> SessionStatus:
        """Status without side effects: a tenant with no session reports IDLE."""
        session = self.registry.get(tenant_id)
        if session is None:
            return SessionStatus(tenant_id=tenant_id, state=ConnectionState.IDLE)
        return session.status()

    async def get_pairing_challenge(self, tenant_id: str, wait: bool = False) -> Optional[str]:
        """
        The tenant's QR data URL, if it is waiting to be paired.

        With wait=True a session that is still initializing gets up to
        PAIRING_WAIT_SECONDS to produce its first challenge.
        """
        session = self.registry.get(tenant_id)
        if session is None:
            return None
        if wait and session.state is ConnectionState.INITIALIZING:
            await session.wait_for(
                ConnectionState.AWAITING_PAIRING,
                ConnectionState.CONNECTED,
                timeout=self._pairing_wait,
            )
        return session.pairing_challenge()

    async def send_message(self, tenant_id: str, destination: str, text: str) -> SentMessage:
        session = await self.ensure_initialized(tenant_id)
        return await session.send_message(destination, text)

    async def send_file(
        self,
        tenant_id: str,
        destination: str,
        url: str,
        file_name: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> SentMessage:
        session = await self.ensure_initialized(tenant_id)
        return await session.send_file(destination, url, file_name=file_name, caption=caption)

    async def verify(self, tenant_id: str, destination: str) -> bool:
        session = await self.ensure_initialized(tenant_id)
        return await session.verify(destination)

    async def send_group_message(self, tenant_id: str, group_id: str, text: str) -> SentMessage:
        session = await self.ensure_initialized(tenant_id)
        return await session.send_group_message(group_id, text)

    async def list_groups(self, tenant_id: str) -> list[GroupInfo]:
        session = await self.ensure_initialized(tenant_id)
        return await session.list_groups()

    async def profile_picture(self, tenant_id: str, destination: str) -> Optional[str]:
        session = await self.ensure_initialized(tenant_id)
        return await session.profile_picture(destination)

    async def logout(self, tenant_id: str) -> bool:
        """
        Log the tenant out and forget its session. Stored credentials are
        purged even when no session is live. Returns whether one was.
        """
        session = self.registry.get(tenant_id)
        if session is None:
            await self._credentials.purge(tenant_id)
            return False
        await session.logout()
        await self.registry.remove(tenant_id, expected=session)
        return True

    def counts(self) -> tuple[int, int]:
        """(sessions held, sessions connected)"""
        sessions = self.registry.list_active()
        connected = sum(1 for _, s in sessions if s.state is ConnectionState.CONNECTED)
        return len(sessions), connected

    async def shutdown(self) -> None:
        for tenant_id, session in self.registry.list_active():
            await session.close()
            await self.registry.remove(tenant_id, expected=session)
        logger.info("All sessions closed")


def create_session_manager(
    settings: Settings,
    client: ProtocolClient,
    credentials: CredentialStore,
    http: httpx.AsyncClient,
    directory: TenantDirectory,
    observers: Iterable[SessionObserver] = (),
) -> SessionManager:
    """Wire a registry whose sessions share the given backend and observers."""
    observers = list(observers)

    def build_session(tenant_id: str) -> ProtocolSession:
        session = ProtocolSession(
            tenant_id,
            client,
            credentials,
            http,
            reconnect_delay=settings.RECONNECT_DELAY_SECONDS,
            verify_before_file=settings.VERIFY_BEFORE_FILE_SEND,
            fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
            max_download_bytes=settings.MAX_DOWNLOAD_BYTES,
        )
        for observer in observers:
            session.subscribe(observer)
        return session

    return SessionManager(
        SessionRegistry(build_session),
        directory,
        credentials,
        pairing_wait=settings.PAIRING_WAIT_SECONDS,
    )
