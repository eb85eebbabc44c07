"""
providers/stub.py
-----------------
In-process protocol backend for development and testing.

- Issues a pairing challenge when there is no resume material, and opens
  immediately when there is (material is the JSON the stub itself emits).
- Can simulate an operator scanning the QR after a delay (auto_pair_after).
- Records every sent message; generates fake provider message ids.
- Network-side events can be injected with emit()/pair()/drop() to drive
  the session state machine from tests.
"""

import asyncio
import json
import secrets
import zlib
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional
from uuid import uuid4

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

logger = get_logger(__name__)

_STOP = object()


def _fake_identity(tenant_id: str) -> str:
    """Stable pseudo phone number for a tenant, used when auto-pairing."""
    return f"57300{zlib.crc32(tenant_id.encode()) % 10_000_000:07d}"


class StubConnection(ProtocolConnection):

    def __init__(
        self,
        client: "StubProtocolClient",
        tenant_id: str,
        resume_material: Optional[bytes],
    ) -> None:
        self.client = client
        self.tenant_id = tenant_id
        self.resume_material = resume_material
        self.is_open = False
        self.logged_out = False
        self.disconnected = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._auto_pair_task: Optional[asyncio.Task] = None

    # ── Simulation hooks ──────────────────────────────────────────────────────

    def emit(self, event: ProtocolEvent) -> None:
        if isinstance(event, ConnectionOpened):
            self.is_open = True
        elif isinstance(event, ConnectionClosed):
            self.is_open = False
        self._queue.put_nowait(event)

    def pair(self, phone: Optional[str] = None) -> None:
        """Simulate a successful QR scan from the given phone."""
        phone = phone or _fake_identity(self.tenant_id)
        material = json.dumps({"identity": phone}).encode()
        self.emit(CredentialsChanged(material=material))
        self.emit(ConnectionOpened(identity=f"{phone}:1@s.whatsapp.net"))

    def drop(
        self,
        cause: DisconnectCause = DisconnectCause.RETRYABLE,
        detail: Optional[str] = None,
    ) -> None:
        self.emit(ConnectionClosed(cause=cause, detail=detail))

    def schedule_pairing(self, delay: float) -> None:
        async def _later() -> None:
            await asyncio.sleep(delay)
            self.pair()

        self._auto_pair_task = asyncio.create_task(_later())

    # ── ProtocolConnection ────────────────────────────────────────────────────

    async def events(self) -> AsyncIterator[ProtocolEvent]:
        while True:
            event = await self._queue.get()
            if event is _STOP:
                return
            yield event
            if isinstance(event, ConnectionClosed):
                return

    def _require_open(self) -> None:
        if not self.is_open or self.disconnected:
            raise ProviderError("Connection is not open", code="NOT_OPEN", retryable=True)

    def _record(self, kind: str, address: str, **fields: Any) -> SentMessage:
        if self.client.fail_sends:
            raise ProviderError(
                "Simulated failure for testing", code="STUB_SIMULATED_FAILURE"
            )
        message_id = f"STUB{uuid4().hex[:16].upper()}"
        timestamp = datetime.now(timezone.utc)
        self.client.sent_messages.append(
            {
                "type": kind,
                "tenant_id": self.tenant_id,
                "to": address,
                "message_id": message_id,
                "timestamp": timestamp,
                **fields,
            }
        )
        logger.info(
            "[STUB] Message sent",
            tenant_id=self.tenant_id,
            to=address,
            kind=kind,
            message_id=message_id,
        )
        return SentMessage(message_id=message_id, timestamp=timestamp)

    async def send_text(self, address: str, text: str) -> SentMessage:
        self._require_open()
        return self._record("text", address, text=text)

    async def send_document(
        self,
        address: str,
        content: bytes,
        mime_type: str,
        file_name: str,
        caption: Optional[str] = None,
    ) -> SentMessage:
        self._require_open()
        return self._record(
            "document",
            address,
            size=len(content),
            mime_type=mime_type,
            file_name=file_name,
            caption=caption,
        )

    async def exists(self, address: str) -> bool:
        self._require_open()
        return address.split("@")[0] not in self.client.unregistered

    async def list_groups(self) -> list[GroupInfo]:
        self._require_open()
        return list(self.client.groups)

    async def profile_picture_url(self, address: str) -> Optional[str]:
        self._require_open()
        return self.client.profile_pictures.get(address.split("@")[0])

    async def logout(self) -> None:
        if self.client.fail_logout:
            raise ProviderError("Simulated logout failure", code="STUB_LOGOUT_FAILURE")
        self.logged_out = True
        self.is_open = False

    async def disconnect(self) -> None:
        if self.disconnected:
            return
        self.disconnected = True
        self.is_open = False
        if self._auto_pair_task is not None:
            self._auto_pair_task.cancel()
        self._queue.put_nowait(_STOP)


class StubProtocolClient(ProtocolClient):
    """
    Stub backend. Attributes tests can flip:
      fail_sends    every send raises ProviderError
      fail_logout   remote logout raises ProviderError
      unregistered  phone numbers exists() reports as unknown
      groups        GroupInfo list returned by list_groups()
      profile_pictures  phone number -> picture URL
    """

    def __init__(self, auto_pair_after: Optional[float] = None) -> None:
        self.auto_pair_after = auto_pair_after
        self.connections: list[StubConnection] = []
        self.sent_messages: list[dict[str, Any]] = []
        self.unregistered: set[str] = set()
        self.groups: list[GroupInfo] = []
        self.profile_pictures: dict[str, str] = {}
        self.fail_sends = False
        self.fail_logout = False

    def connections_for(self, tenant_id: str) -> list[StubConnection]:
        return [c for c in self.connections if c.tenant_id == tenant_id]

    def latest(self, tenant_id: str) -> StubConnection:
        return self.connections_for(tenant_id)[-1]

    async def connect(
        self, tenant_id: str, resume_material: Optional[bytes]
    ) -> StubConnection:
        connection = StubConnection(self, tenant_id, resume_material)
        self.connections.append(connection)

        identity = None
        if resume_material:
            try:
                identity = json.loads(resume_material).get("identity")
            except ValueError:
                logger.warning("[STUB] Unreadable resume material", tenant_id=tenant_id)

        if identity:
            connection.emit(ConnectionOpened(identity=f"{identity}:1@s.whatsapp.net"))
        else:
            challenge = f"stub-pair:{tenant_id}:{secrets.token_hex(8)}"
            connection.emit(PairingChallengeIssued(challenge=challenge))
            if self.auto_pair_after is not None:
                connection.schedule_pairing(self.auto_pair_after)

        logger.info("[STUB] Connection started", tenant_id=tenant_id, resumed=bool(identity))
        return connection
