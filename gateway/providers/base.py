"""
providers/base.py
-----------------
Capability interface for the underlying messaging-network implementation.

A ProtocolClient opens one ProtocolConnection per tenant. The connection
pushes lifecycle events (pairing challenge, open, close, credential
updates) through an async iterator and exposes the send operations the
session core needs. Implementations:
  - StubProtocolClient       (in-process, development and tests)
  - EvolutionProtocolClient  (Evolution API bridge over HTTP)

The session core only talks to these classes; it never sees wire-level
details such as sockets, encryption, or the bridge's REST payloads.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Optional, Union


class ProviderError(Exception):
    """Error from the underlying protocol implementation."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


class DisconnectCause(str, Enum):
    """Why the network closed a connection."""

    RETRYABLE = "retryable"
    LOGGED_OUT = "logged_out"


# ── Events ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PairingChallengeIssued:
    """A new QR payload an operator must scan to pair the account."""

    challenge: str


@dataclass(frozen=True)
class ConnectionOpened:
    """The connection is authenticated; identity is the raw account id."""

    identity: str


@dataclass(frozen=True)
class ConnectionClosed:
    cause: DisconnectCause
    detail: Optional[str] = None


@dataclass(frozen=True)
class CredentialsChanged:
    """New resume material that must be persisted for the next connect."""

    material: bytes


ProtocolEvent = Union[
    PairingChallengeIssued, ConnectionOpened, ConnectionClosed, CredentialsChanged
]


@dataclass(frozen=True)
class SentMessage:
    """Result of a successful send."""

    message_id: str
    timestamp: datetime
    raw_response: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class GroupInfo:
    """A group the connected account participates in."""

    id: str
    name: str
    participants: int
    creation: Optional[datetime] = None
    owner: Optional[str] = None


# ── Capability ────────────────────────────────────────────────────────────────

class ProtocolConnection(ABC):
    """One live (or connecting) session with the messaging network."""

    @abstractmethod
    def events(self) -> AsyncIterator[ProtocolEvent]:
        """
        Iterate lifecycle events in the order the network produced them.

        The iterator ends after a ConnectionClosed event or after
        disconnect() is called.
        """
        ...

    @abstractmethod
    async def send_text(self, address: str, text: str) -> SentMessage:
        """
        Send a text message to a fully-qualified address, either a user
        ("573001112222@s.whatsapp.net") or a group ("<id>@g.us").

        Raises:
            ProviderError: on any transport or network-side failure.
        """
        ...

    @abstractmethod
    async def send_document(
        self,
        address: str,
        content: bytes,
        mime_type: str,
        file_name: str,
        caption: Optional[str] = None,
    ) -> SentMessage:
        """Send content as a document attachment. Raises ProviderError."""
        ...

    @abstractmethod
    async def exists(self, address: str) -> bool:
        """Return whether the address is registered on the network."""
        ...

    @abstractmethod
    async def list_groups(self) -> list[GroupInfo]:
        """Groups the account participates in. Raises ProviderError."""
        ...

    @abstractmethod
    async def profile_picture_url(self, address: str) -> Optional[str]:
        """URL of the address's profile picture, None when it has none."""
        ...

    @abstractmethod
    async def logout(self) -> None:
        """Unpair the account on the network side. Raises ProviderError."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection locally. Never raises."""
        ...


class ProtocolClient(ABC):
    """Factory for per-tenant protocol connections."""

    @abstractmethod
    async def connect(
        self, tenant_id: str, resume_material: Optional[bytes]
    ) -> ProtocolConnection:
        """
        Start connecting. Returns as soon as the connection object exists;
        progress (QR, open, close) arrives through its events().

        Raises:
            ProviderError: if the connection could not be started at all.
        """
        ...

    async def close(self) -> None:
        """Release shared resources held by the client."""
        return None
