"""
services/delivery_service.py
----------------------------
Sends text, documents and group messages on behalf of a tenant and records
every attempt.

Each attempt produces exactly one audit row (sent or failed) with the
normalized destination and the measured latency. Session errors are
re-raised unchanged after auditing so routes can map them to responses.
"""

import asyncio
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from gateway.core.logging import get_logger
from gateway.models.message import DeliveryStatus, MessageKind
from gateway.providers.base import SentMessage
from gateway.sessions.addressing import normalize_phone, to_group_address
from gateway.sessions.audit import AuditEntry, AuditLogger
from gateway.sessions.errors import InvalidDestination, SessionError, UnknownTenant
from gateway.sessions.manager import SessionManager

logger = get_logger(__name__)


def _destination_for_log(raw: str) -> str:
    try:
        return normalize_phone(raw)
    except InvalidDestination:
        return raw


def _group_for_log(raw: str) -> str:
    try:
        return to_group_address(raw)
    except InvalidDestination:
        return raw


class DeliveryService:

    def __init__(
        self,
        manager: SessionManager,
        audit: AuditLogger,
        bulk_delay: float = 2.0,
    ) -> None:
        self._manager = manager
        self._audit = audit
        self._bulk_delay = bulk_delay

    async def send(
        self,
        tenant_id: str,
        phone: str,
        text: Optional[str] = None,
        url: Optional[str] = None,
        filename: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> tuple[SentMessage, int]:
        """
        Send one message: a document when `url` is given (the caption
        falls back to `text`), plain text otherwise.

        Returns:
            (provider result, latency in milliseconds)

        Raises:
            SessionError subclasses, after the failure has been audited.
        """
        kind = MessageKind.file if url else MessageKind.text
        if kind is MessageKind.file:
            caption = caption or text or None
            action = partial(
                self._manager.send_file, tenant_id, phone, url, file_name=filename, caption=caption
            )
        else:
            action = partial(self._manager.send_message, tenant_id, phone, text or "")
        entry = dict(
            tenant_id=tenant_id,
            destination=_destination_for_log(phone),
            kind=kind,
            message_text=text,
            file_url=url,
            caption=caption if kind is MessageKind.file else None,
        )
        return await self._attempt(entry, action)

    async def send_group(
        self, tenant_id: str, group_id: str, text: str
    ) -> tuple[SentMessage, int]:
        """Send text to a group the account belongs to; audited like any send."""
        entry = dict(
            tenant_id=tenant_id,
            destination=_group_for_log(group_id),
            kind=MessageKind.group,
            message_text=text,
        )
        return await self._attempt(
            entry, partial(self._manager.send_group_message, tenant_id, group_id, text)
        )

    async def _attempt(
        self,
        entry: dict[str, Any],
        action: Callable[[], Awaitable[SentMessage]],
    ) -> tuple[SentMessage, int]:
        tenant_id = entry["tenant_id"]
        kind = entry["kind"]
        started = time.monotonic()
        try:
            sent = await action()
        except UnknownTenant:
            raise
        except SessionError as exc:
            latency_ms = int((time.monotonic() - started) * 1000)
            logger.warning(
                "Message not delivered",
                tenant_id=tenant_id,
                kind=kind.value,
                error=exc.detail,
                response_time_ms=latency_ms,
            )
            await self._audit.append(
                AuditEntry(
                    status=DeliveryStatus.failed,
                    latency_ms=latency_ms,
                    error_detail=exc.detail,
                    **entry,
                )
            )
            raise
        except Exception as exc:
            latency_ms = int((time.monotonic() - started) * 1000)
            await self._audit.append(
                AuditEntry(
                    status=DeliveryStatus.failed,
                    latency_ms=latency_ms,
                    error_detail=str(exc) or type(exc).__name__,
                    **entry,
                )
            )
            raise

        latency_ms = int((time.monotonic() - started) * 1000)
        await self._audit.append(
            AuditEntry(
                status=DeliveryStatus.sent,
                latency_ms=latency_ms,
                provider_message_id=sent.message_id,
                sent_at=sent.timestamp or datetime.now(timezone.utc),
                **entry,
            )
        )
        logger.info(
            "Message delivered",
            tenant_id=tenant_id,
            kind=kind.value,
            message_id=sent.message_id,
            response_time_ms=latency_ms,
        )
        return sent, latency_ms

    async def send_bulk(
        self,
        tenant_id: str,
        phones: list[str],
        text: Optional[str] = None,
        url: Optional[str] = None,
        filename: Optional[str] = None,
        caption: Optional[str] = None,
        delay: Optional[float] = None,
    ) -> list[dict]:
        """
        Send the same content to each phone in order, pausing `delay`
        seconds between sends. One recipient's failure does not stop the
        batch; an unknown tenant does.
        """
        pause = self._bulk_delay if delay is None else delay
        results: list[dict] = []
        for index, phone in enumerate(phones):
            if index and pause > 0:
                await asyncio.sleep(pause)
            try:
                sent, _ = await self.send(tenant_id, phone, text, url, filename, caption)
                results.append({"phone": phone, "success": True, "message_id": sent.message_id})
            except UnknownTenant:
                raise
            except SessionError as exc:
                results.append({"phone": phone, "success": False, "error": exc.detail})
        logger.info(
            "Bulk send finished",
            tenant_id=tenant_id,
            total=len(results),
            sent=sum(1 for r in results if r["success"]),
        )
        return results
