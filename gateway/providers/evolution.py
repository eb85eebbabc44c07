"""
providers/evolution.py
----------------------
Protocol backend that drives an Evolution API server (a Baileys-based
WhatsApp Web bridge) over its REST API.

Each tenant gets one Evolution instance. The bridge keeps the Signal keys
itself, so the resume material stored on our side is just the instance
name. Evolution reports progress through webhooks or polling; this backend
polls connectionState and turns changes into the ProtocolEvent stream the
session core consumes.

Documentation: https://doc.evolution-api.com/
"""

import asyncio
import base64
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import httpx

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


def _number(address: str) -> str:
    return address.split("@")[0]


def _recipient(address: str) -> str:
    """The bridge takes bare numbers for users and full ids for groups."""
    return address if address.endswith("@g.us") else _number(address)


def _group_info(data: dict[str, Any]) -> GroupInfo:
    creation = None
    if data.get("creation"):
        try:
            creation = datetime.fromtimestamp(int(data["creation"]), tz=timezone.utc)
        except (TypeError, ValueError):
            creation = None
    participants = data.get("size")
    if participants is None:
        participants = len(data.get("participants") or [])
    return GroupInfo(
        id=data["id"],
        name=data.get("subject") or "",
        participants=int(participants),
        creation=creation,
        owner=data.get("owner") or data.get("subjectOwner"),
    )


def _sent_message(response: dict[str, Any]) -> SentMessage:
    message_id = response.get("key", {}).get("id") or response.get("id")
    if not message_id:
        raise ProviderError("Bridge response has no message id", details=response)
    raw_ts = response.get("messageTimestamp")
    try:
        timestamp = datetime.fromtimestamp(int(raw_ts), tz=timezone.utc)
    except (TypeError, ValueError):
        timestamp = datetime.now(timezone.utc)
    return SentMessage(message_id=message_id, timestamp=timestamp, raw_response=response)


class EvolutionConnection(ProtocolConnection):

    def __init__(
        self,
        client: "EvolutionProtocolClient",
        tenant_id: str,
        instance_name: str,
    ) -> None:
        self.client = client
        self.tenant_id = tenant_id
        self.instance_name = instance_name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._poller: Optional[asyncio.Task] = None
        self._closed = False

    def start(self) -> None:
        self._poller = asyncio.create_task(self._poll())

    def _emit(self, event: ProtocolEvent) -> None:
        self._queue.put_nowait(event)

    async def _poll(self) -> None:
        """Translate bridge state changes into events until the connection ends."""
        opened = False
        last_challenge = None
        try:
            while True:
                state = await self.client.connection_state(self.instance_name)
                if state is None:
                    self._emit(ConnectionClosed(DisconnectCause.LOGGED_OUT, "instance removed"))
                    return
                if state == "open":
                    if not opened:
                        opened = True
                        owner = await self.client.owner_jid(self.instance_name)
                        self._emit(ConnectionOpened(identity=owner or ""))
                elif opened:
                    self._emit(ConnectionClosed(DisconnectCause.RETRYABLE, f"bridge state {state}"))
                    return
                else:
                    challenge = await self.client.pairing_code(self.instance_name)
                    if challenge and challenge != last_challenge:
                        last_challenge = challenge
                        self._emit(PairingChallengeIssued(challenge=challenge))
                await asyncio.sleep(self.client.poll_interval)
        except ProviderError as exc:
            logger.warning(
                "Evolution polling failed",
                tenant_id=self.tenant_id,
                instance=self.instance_name,
                error=str(exc),
            )
            self._emit(ConnectionClosed(DisconnectCause.RETRYABLE, str(exc)))
        except Exception as exc:
            logger.error(
                "Unexpected bridge response while polling",
                tenant_id=self.tenant_id,
                instance=self.instance_name,
                error=str(exc),
                exc_info=True,
            )
            self._emit(ConnectionClosed(DisconnectCause.RETRYABLE, f"polling stopped: {exc}"))

    async def events(self) -> AsyncIterator[ProtocolEvent]:
        while True:
            event = await self._queue.get()
            if event is _STOP:
                return
            yield event
            if isinstance(event, ConnectionClosed):
                return

    async def send_text(self, address: str, text: str) -> SentMessage:
        response = await self.client.request(
            "POST",
            f"/message/sendText/{self.instance_name}",
            {"number": _recipient(address), "text": text},
        )
        return _sent_message(response)

    async def send_document(
        self,
        address: str,
        content: bytes,
        mime_type: str,
        file_name: str,
        caption: Optional[str] = None,
    ) -> SentMessage:
        payload = {
            "number": _number(address),
            "mediatype": "document",
            "mimetype": mime_type,
            "caption": caption or "",
            "media": base64.b64encode(content).decode("ascii"),
            "fileName": file_name,
        }
        response = await self.client.request(
            "POST", f"/message/sendMedia/{self.instance_name}", payload
        )
        return _sent_message(response)

    async def exists(self, address: str) -> bool:
        response = await self.client.request(
            "POST",
            f"/chat/whatsappNumbers/{self.instance_name}",
            {"numbers": [_number(address)]},
        )
        results = response if isinstance(response, list) else response.get("data", [])
        return bool(results) and bool(results[0].get("exists"))

    async def list_groups(self) -> list[GroupInfo]:
        response = await self.client.request(
            "GET", f"/group/fetchAllGroups/{self.instance_name}?getParticipants=false"
        )
        groups = response if isinstance(response, list) else response.get("groups", [])
        return [_group_info(g) for g in groups if isinstance(g, dict) and g.get("id")]

    async def profile_picture_url(self, address: str) -> Optional[str]:
        response = await self.client.request(
            "POST",
            f"/chat/fetchProfilePictureUrl/{self.instance_name}",
            {"number": _number(address)},
        )
        if not isinstance(response, dict):
            return None
        return response.get("profilePictureUrl") or None

    async def logout(self) -> None:
        await self.client.request("DELETE", f"/instance/logout/{self.instance_name}")
        await self.client.request(
            "DELETE", f"/instance/delete/{self.instance_name}", allow_missing=True
        )

    async def disconnect(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._poller is not None and not self._poller.done():
            self._poller.cancel()
        self._queue.put_nowait(_STOP)


class EvolutionProtocolClient(ProtocolClient):
    """
    Evolution API backend.

    One shared httpx.AsyncClient carries the global API key; instances are
    named "tenant-<tenant_id>" unless resume material names another one.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        poll_interval: float = 3.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "apikey": self.api_key,
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[dict[str, Any]] = None,
        allow_missing: bool = False,
    ) -> Any:
        """
        Make an authenticated API request.

        Returns None for a 404 when allow_missing is set; every other
        failure is raised as ProviderError.
        """
        client = await self._get_client()
        url = f"{self.api_url}{endpoint}"

        try:
            response = await client.request(method.upper(), url, json=json_data)
        except httpx.RequestError as e:
            logger.error("Evolution request failed", url=url, error=str(e))
            raise ProviderError(
                message=f"HTTP request failed: {e}",
                code="HTTP_ERROR",
                retryable=True,
            ) from e

        if response.status_code == 404 and allow_missing:
            return None

        try:
            response_data = response.json() if response.content else {}
        except ValueError:
            response_data = {"message": response.text}

        if response.status_code >= 400:
            error = (
                response_data.get("error") or response_data.get("message", "Unknown error")
                if isinstance(response_data, dict)
                else "Unknown error"
            )
            raise ProviderError(
                message=str(error),
                code=str(response.status_code),
                details=response_data if isinstance(response_data, dict) else {},
                retryable=response.status_code >= 500,
            )

        return response_data

    # ── Instance management ───────────────────────────────────────────────────

    async def connection_state(self, instance_name: str) -> Optional[str]:
        """Return "open" / "connecting" / "close", or None if the instance is gone."""
        response = await self.request(
            "GET", f"/instance/connectionState/{instance_name}", allow_missing=True
        )
        if response is None:
            return None
        return response.get("instance", {}).get("state") or response.get("state")

    async def pairing_code(self, instance_name: str) -> Optional[str]:
        response = await self.request("GET", f"/instance/connect/{instance_name}")
        return response.get("code") or response.get("qrcode", {}).get("code")

    async def owner_jid(self, instance_name: str) -> Optional[str]:
        response = await self.request(
            "GET", f"/instance/fetchInstances?instanceName={instance_name}"
        )
        instances = response if isinstance(response, list) else response.get("instance", [])
        for instance in instances:
            data = instance.get("instance", instance)
            if data.get("name", data.get("instanceName")) == instance_name:
                return data.get("ownerJid") or data.get("owner")
        return None

    async def _ensure_instance(self, instance_name: str) -> bool:
        """Create the instance if the bridge does not know it. Returns True if created."""
        state = await self.connection_state(instance_name)
        if state is not None:
            return False
        await self.request(
            "POST",
            "/instance/create",
            {
                "instanceName": instance_name,
                "qrcode": True,
                "integration": "WHATSAPP-BAILEYS",
            },
        )
        logger.info("Evolution instance created", instance=instance_name)
        return True

    async def connect(
        self, tenant_id: str, resume_material: Optional[bytes]
    ) -> EvolutionConnection:
        instance_name = f"tenant-{tenant_id}"
        if resume_material:
            try:
                instance_name = json.loads(resume_material)["instance"]
            except (ValueError, KeyError, TypeError):
                logger.warning("Ignoring unreadable resume material", tenant_id=tenant_id)

        created = await self._ensure_instance(instance_name)
        connection = EvolutionConnection(self, tenant_id, instance_name)
        if created or not resume_material:
            material = json.dumps({"instance": instance_name}).encode()
            connection._emit(CredentialsChanged(material=material))
        connection.start()
        return connection
