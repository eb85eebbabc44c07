"""
sessions/session.py
-------------------
ProtocolSession: one tenant's connection to the messaging network.

State machine:

    IDLE ──ensure_initialized()──▶ INITIALIZING ──QR──▶ AWAITING_PAIRING
                                        │                     │
                                        └──────open──────────▶ CONNECTED
    CONNECTED ──close(retryable)──▶ DISCONNECTED ──(delay)──▶ INITIALIZING
    CONNECTED ──close(logged out)─▶ LOGGED_OUT   (credentials purged, retired)
    any ──logout()──▶ IDLE                        (credentials purged, retired)

Invariants kept by _transition():
  - resolved_identity is set if and only if state is CONNECTED.
  - the pairing challenge only survives while state is AWAITING_PAIRING.

Network events are consumed by a single pump task per connection, so they
are applied in the order the provider emitted them. Concurrent
ensure_initialized() calls share one in-flight initialization task.
"""

import asyncio
import base64
import io
import mimetypes
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
import qrcode

from gateway.core.logging import get_logger
from gateway.providers.base import (
    ConnectionClosed,
    ConnectionOpened,
    CredentialsChanged,
    DisconnectCause,
    GroupInfo,
    PairingChallengeIssued,
    ProtocolClient,
    ProtocolConnection,
    ProtocolEvent,
    ProviderError,
    SentMessage,
)
from gateway.sessions.addressing import (
    file_name_from_url,
    normalize_identity,
    to_address,
    to_group_address,
)
from gateway.sessions.credentials import CredentialStore
from gateway.sessions.errors import (
    FetchFailed,
    InitializationFailed,
    LoggedOutRemotely,
    LookupFailed,
    NotConnected,
    SendFailed,
)
from gateway.sessions.events import (
    SessionConnected,
    SessionDisconnected,
    SessionEvent,
    SessionLoggedOut,
    SessionObserver,
)

logger = get_logger(__name__)

GENERIC_MIME_TYPE = "application/octet-stream"


class ConnectionState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    LOGGED_OUT = "logged_out"


# States in which a connection object exists or is being created
_LIVE_STATES = (
    ConnectionState.INITIALIZING,
    ConnectionState.AWAITING_PAIRING,
    ConnectionState.CONNECTED,
)


@dataclass(frozen=True)
class SessionStatus:
    tenant_id: str
    state: ConnectionState
    identity: Optional[str] = None
    initializing: bool = False
    reconnect_pending: bool = False

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED


def render_challenge(challenge: str) -> str:
    """Render a pairing challenge as a PNG data URL an operator can scan."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(challenge)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def being_cancelled() -> bool:
    """Whether the running task itself has a cancellation request pending."""
    current = asyncio.current_task()
    return current is not None and current.cancelling() > 0


class ProtocolSession:

    def __init__(
        self,
        tenant_id: str,
        client: ProtocolClient,
        credentials: CredentialStore,
        http: httpx.AsyncClient,
        *,
        reconnect_delay: float = 5.0,
        verify_before_file: bool = True,
        fetch_timeout: float = 30.0,
        max_download_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self.tenant_id = tenant_id
        self._client = client
        self._credentials = credentials
        self._http = http
        self._reconnect_delay = reconnect_delay
        self._verify_before_file = verify_before_file
        self._fetch_timeout = fetch_timeout
        self._max_download_bytes = max_download_bytes

        self._state = ConnectionState.IDLE
        self._identity: Optional[str] = None
        self._challenge: Optional[str] = None
        self._challenge_image: Optional[str] = None
        self._retired = False

        self._connection: Optional[ProtocolConnection] = None
        self._pump: Optional[asyncio.Task] = None
        self._init_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._observers: list[SessionObserver] = []
        self._state_changed = asyncio.Event()

    def __repr__(self) -> str:
        return f"<ProtocolSession tenant_id={self.tenant_id} state={self._state.value}>"

    # ── Observation ───────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def resolved_identity(self) -> Optional[str]:
        return self._identity

    @property
    def initializing(self) -> bool:
        return self._init_task is not None and not self._init_task.done()

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def retired(self) -> bool:
        """True once logged out (locally or remotely) or shut down."""
        return self._retired

    def subscribe(self, observer: SessionObserver) -> None:
        self._observers.append(observer)

    def status(self) -> SessionStatus:
        return SessionStatus(
            tenant_id=self.tenant_id,
            state=self._state,
            identity=self._identity,
            initializing=self.initializing,
            reconnect_pending=self.reconnect_pending,
        )

    def pairing_challenge(self) -> Optional[str]:
        """Current QR as a PNG data URL, or None when not awaiting pairing."""
        if self._state is not ConnectionState.AWAITING_PAIRING or not self._challenge:
            return None
        if self._challenge_image is None:
            self._challenge_image = render_challenge(self._challenge)
        return self._challenge_image

    async def wait_for(self, *states: ConnectionState, timeout: float) -> bool:
        """Wait until the session reaches one of `states`. False on timeout."""

        async def _wait() -> None:
            while self._state not in states:
                changed = self._state_changed
                await changed.wait()

        try:
            await asyncio.wait_for(_wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def ensure_initialized(self) -> None:
        """
        Start connecting unless a connection exists or is being created.

        Returns once initialization has started; it does not wait for the
        account to be paired or connected. Concurrent callers share the
        same in-flight attempt and see the same outcome.

        Raises:
            InitializationFailed: the provider could not start a connection
                (the session is back in IDLE), or the session was retired,
                including by a logout while this call was waiting.
            LoggedOutRemotely: the device unpaired this session.
        """
        if self._retired:
            if self._state is ConnectionState.LOGGED_OUT:
                raise LoggedOutRemotely()
            raise InitializationFailed("Session has been closed; request a new one")

        task = self._init_task
        if task is None:
            if self._state in _LIVE_STATES:
                return
            task = self._init_task = asyncio.create_task(self._initialize())
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # logout() or close() cancelled the shared attempt under us
            if task.cancelled() and not being_cancelled():
                raise InitializationFailed("Session was closed during initialization") from None
            raise

    async def _initialize(self) -> None:
        try:
            self._cancel_reconnect()
            self._transition(ConnectionState.INITIALIZING)
            try:
                material = await self._credentials.load(self.tenant_id)
                connection = await self._client.connect(self.tenant_id, material)
            except ProviderError as exc:
                self._transition(ConnectionState.IDLE)
                logger.warning("Connection attempt failed", tenant_id=self.tenant_id, error=str(exc))
                raise InitializationFailed(str(exc)) from exc
            except Exception as exc:
                self._transition(ConnectionState.IDLE)
                logger.error(
                    "Connection attempt crashed",
                    tenant_id=self.tenant_id,
                    error=str(exc),
                    exc_info=True,
                )
                raise InitializationFailed(str(exc)) from exc

            self._connection = connection
            self._pump = asyncio.create_task(self._consume(connection))
            logger.info("Connection started", tenant_id=self.tenant_id, resumed=material is not None)
        finally:
            self._init_task = None

    async def logout(self) -> None:
        """
        Unpair and retire the session.

        The remote logout is best effort; stored credentials are always
        purged and the state always ends in IDLE.
        """
        self._retired = True
        await self._teardown()

        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.logout()
            except ProviderError as exc:
                logger.warning("Remote logout failed", tenant_id=self.tenant_id, error=str(exc))
            await connection.disconnect()

        await self._credentials.purge(self.tenant_id)
        self._transition(ConnectionState.IDLE)
        logger.info("Session logged out", tenant_id=self.tenant_id)
        await self._notify(SessionLoggedOut(tenant_id=self.tenant_id, remote=False))

    async def close(self) -> None:
        """Disconnect without unpairing (process shutdown). Credentials are kept."""
        self._retired = True
        await self._teardown()
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.disconnect()
        self._transition(ConnectionState.IDLE)

    async def _teardown(self) -> None:
        """Stop the reconnect timer, the in-flight initialization and the event pump."""
        self._cancel_reconnect()
        for task in (self._init_task, self._pump):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with suppress(asyncio.CancelledError, InitializationFailed):
                    await task
        self._init_task = None
        self._pump = None

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

    def _schedule_reconnect(self) -> None:
        async def _reconnect_later() -> None:
            await asyncio.sleep(self._reconnect_delay)
            self._reconnect_task = None
            try:
                await self.ensure_initialized()
            except InitializationFailed as exc:
                logger.warning(
                    "Reconnect failed, waiting for the next sweep",
                    tenant_id=self.tenant_id,
                    error=exc.detail,
                )

        self._cancel_reconnect()
        self._reconnect_task = asyncio.create_task(_reconnect_later())

    # ── Event handling ────────────────────────────────────────────────────────

    async def _consume(self, connection: ProtocolConnection) -> None:
        try:
            async for event in connection.events():
                if connection is not self._connection:
                    return
                await self._apply(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Event stream failed",
                tenant_id=self.tenant_id,
                error=str(exc),
                exc_info=True,
            )

        if connection is self._connection:
            await self._on_closed(
                connection,
                ConnectionClosed(DisconnectCause.RETRYABLE, "event stream ended"),
            )

    async def _apply(self, event: ProtocolEvent) -> None:
        if isinstance(event, PairingChallengeIssued):
            if self._state in (ConnectionState.INITIALIZING, ConnectionState.AWAITING_PAIRING):
                self._transition(ConnectionState.AWAITING_PAIRING, challenge=event.challenge)
        elif isinstance(event, ConnectionOpened):
            identity = normalize_identity(event.identity) if event.identity else "unknown"
            self._transition(ConnectionState.CONNECTED, identity=identity)
            await self._notify(SessionConnected(tenant_id=self.tenant_id, identity=identity))
        elif isinstance(event, CredentialsChanged):
            try:
                await self._credentials.save(self.tenant_id, event.material)
            except Exception as exc:
                logger.error(
                    "Could not persist resume material",
                    tenant_id=self.tenant_id,
                    error=str(exc),
                    exc_info=True,
                )
        elif isinstance(event, ConnectionClosed):
            await self._on_closed(self._connection, event)

    async def _on_closed(
        self, connection: Optional[ProtocolConnection], event: ConnectionClosed
    ) -> None:
        self._connection = None
        if connection is not None:
            await connection.disconnect()

        if event.cause is DisconnectCause.LOGGED_OUT:
            self._retired = True
            self._transition(ConnectionState.LOGGED_OUT)
            logger.warning("Logged out from the device", tenant_id=self.tenant_id)
            try:
                await self._credentials.purge(self.tenant_id)
            except Exception as exc:
                logger.error(
                    "Could not purge resume material",
                    tenant_id=self.tenant_id,
                    error=str(exc),
                    exc_info=True,
                )
            await self._notify(SessionLoggedOut(tenant_id=self.tenant_id, remote=True))
            return

        self._transition(ConnectionState.DISCONNECTED)
        logger.info(
            "Connection lost, reconnect scheduled",
            tenant_id=self.tenant_id,
            detail=event.detail,
            delay=self._reconnect_delay,
        )
        await self._notify(SessionDisconnected(tenant_id=self.tenant_id, detail=event.detail))
        self._schedule_reconnect()

    def _transition(
        self,
        state: ConnectionState,
        *,
        identity: Optional[str] = None,
        challenge: Optional[str] = None,
    ) -> None:
        previous = self._state
        self._state = state
        self._identity = identity if state is ConnectionState.CONNECTED else None
        if state is ConnectionState.AWAITING_PAIRING:
            if challenge is not None and challenge != self._challenge:
                self._challenge = challenge
                self._challenge_image = None
        else:
            self._challenge = None
            self._challenge_image = None

        if previous is not state:
            logger.info(
                "Session state changed",
                tenant_id=self.tenant_id,
                previous=previous.value,
                state=state.value,
            )
        changed, self._state_changed = self._state_changed, asyncio.Event()
        changed.set()

    async def _notify(self, event: SessionEvent) -> None:
        for observer in list(self._observers):
            try:
                await observer.on_session_event(event)
            except Exception as exc:
                logger.error(
                    "Session observer failed",
                    tenant_id=self.tenant_id,
                    observer=type(observer).__name__,
                    error=str(exc),
                    exc_info=True,
                )

    # ── Sending ───────────────────────────────────────────────────────────────

    def _require_connected(self) -> ProtocolConnection:
        if self._state is not ConnectionState.CONNECTED or self._connection is None:
            raise NotConnected()
        return self._connection

    async def send_message(self, destination: str, text: str) -> SentMessage:
        """
        Raises:
            NotConnected, InvalidDestination, SendFailed
        """
        connection = self._require_connected()
        address = to_address(destination)
        try:
            return await connection.send_text(address, text)
        except ProviderError as exc:
            logger.warning("Text send failed", tenant_id=self.tenant_id, error=str(exc))
            raise SendFailed(str(exc)) from exc

    async def verify(self, destination: str) -> bool:
        """Whether the destination is registered on the network."""
        connection = self._require_connected()
        address = to_address(destination)
        try:
            return await connection.exists(address)
        except ProviderError as exc:
            raise SendFailed(f"Could not verify recipient: {exc}") from exc

    async def send_group_message(self, group_id: str, text: str) -> SentMessage:
        """
        Raises:
            NotConnected, InvalidDestination, SendFailed
        """
        connection = self._require_connected()
        address = to_group_address(group_id)
        try:
            return await connection.send_text(address, text)
        except ProviderError as exc:
            logger.warning("Group send failed", tenant_id=self.tenant_id, group=address, error=str(exc))
            raise SendFailed(str(exc)) from exc

    async def list_groups(self) -> list[GroupInfo]:
        """
        Raises:
            NotConnected
            LookupFailed: the network did not return the group list.
        """
        connection = self._require_connected()
        try:
            return await connection.list_groups()
        except ProviderError as exc:
            logger.warning("Group listing failed", tenant_id=self.tenant_id, error=str(exc))
            raise LookupFailed(f"Could not list groups: {exc}") from exc

    async def profile_picture(self, destination: str) -> Optional[str]:
        """Picture URL of a contact; None when it has none or hides it."""
        connection = self._require_connected()
        address = to_address(destination)
        try:
            return await connection.profile_picture_url(address)
        except ProviderError as exc:
            logger.info("Profile picture unavailable", tenant_id=self.tenant_id, error=str(exc))
            return None

    async def send_file(
        self,
        destination: str,
        source_url: str,
        file_name: Optional[str] = None,
        caption: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> SentMessage:
        """
        Download `source_url` and forward it as a document.

        Raises:
            NotConnected, InvalidDestination
            FetchFailed: the URL is malformed, or the download failed or
                exceeded the size limit.
            SendFailed: the recipient is unknown (when verification is on)
                or the provider rejected the document.
        """
        self._require_connected()
        address = to_address(destination)
        try:
            name = file_name or file_name_from_url(source_url)
        except ValueError as exc:
            raise FetchFailed(f"Invalid URL: {exc}") from exc
        if self._verify_before_file and not await self.verify(destination):
            raise SendFailed(f"{address.split('@')[0]} is not registered on WhatsApp")

        content, served_type = await self._fetch(source_url)
        resolved_type = (
            mime_type
            or (served_type if served_type and served_type != GENERIC_MIME_TYPE else None)
            or mimetypes.guess_type(name)[0]
            or GENERIC_MIME_TYPE
        )

        # The download may have outlived the connection
        connection = self._require_connected()
        try:
            return await connection.send_document(address, content, resolved_type, name, caption)
        except ProviderError as exc:
            logger.warning("Document send failed", tenant_id=self.tenant_id, error=str(exc))
            raise SendFailed(str(exc)) from exc

    async def _fetch(self, url: str) -> tuple[bytes, Optional[str]]:
        chunks: list[bytes] = []
        size = 0
        try:
            async with self._http.stream(
                "GET", url, timeout=self._fetch_timeout, follow_redirects=True
            ) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > self._max_download_bytes:
                        raise FetchFailed(
                            f"File is larger than {self._max_download_bytes} bytes"
                        )
                    chunks.append(chunk)
                content_type = response.headers.get("content-type")
        except httpx.HTTPStatusError as exc:
            raise FetchFailed(
                f"Download returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchFailed(f"Download failed: {exc}") from exc

        served = content_type.split(";", 1)[0].strip().lower() if content_type else None
        return b"".join(chunks), served or None
