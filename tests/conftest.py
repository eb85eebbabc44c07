"""
Pytest fixtures for the messaging gateway.

Settings are read at import time, so the environment is prepared before
any gateway module is imported.
"""

import asyncio
import os
import time
from typing import Optional

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PROTOCOL_BACKEND", "stub")

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from gateway.models import Base  # noqa: E402
from gateway.providers.stub import StubProtocolClient  # noqa: E402
from gateway.sessions.credentials import CredentialStore  # noqa: E402
from gateway.sessions.session import ProtocolSession  # noqa: E402


class MemoryCredentialStore(CredentialStore):
    """Credential store kept in a dict, with counters for assertions."""

    def __init__(self) -> None:
        self.materials: dict[str, bytes] = {}
        self.purged: list[str] = []

    async def load(self, tenant_id: str) -> Optional[bytes]:
        return self.materials.get(tenant_id)

    async def save(self, tenant_id: str, material: bytes) -> None:
        self.materials[tenant_id] = material

    async def purge(self, tenant_id: str) -> None:
        self.materials.pop(tenant_id, None)
        self.purged.append(tenant_id)


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list = []

    async def on_session_event(self, event) -> None:
        self.events.append(event)


class StaticDirectory:
    """TenantDirectory over a fixed set of ids."""

    def __init__(self, *tenant_ids: str) -> None:
        self.tenant_ids = list(tenant_ids)

    async def exists(self, tenant_id: str) -> bool:
        return tenant_id in self.tenant_ids

    async def active_tenant_ids(self) -> list[str]:
        return list(self.tenant_ids)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll `predicate` until true; fail the test on timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def pdf_transport(
    body: bytes = b"%PDF-1.4 test document",
    content_type: str = "application/pdf",
    status_code: int = 200,
) -> httpx.MockTransport:
    """Serves `body` for every request and counts the requests it saw."""

    def handler(request: httpx.Request) -> httpx.Response:
        handler.requests.append(request)
        return httpx.Response(
            status_code, content=body, headers={"content-type": content_type}
        )

    handler.requests = []
    transport = httpx.MockTransport(handler)
    transport.requests = handler.requests
    return transport


@pytest.fixture
def stub_client():
    return StubProtocolClient()


@pytest.fixture
def credentials():
    return MemoryCredentialStore()


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient(transport=pdf_transport()) as client:
        yield client


@pytest.fixture
def make_session(stub_client, credentials, http_client):
    """Factory for sessions wired to the stub backend."""

    def _make(tenant_id: str = "acme", **options) -> ProtocolSession:
        options.setdefault("reconnect_delay", 0.05)
        return ProtocolSession(
            tenant_id,
            options.pop("client", stub_client),
            options.pop("credentials", credentials),
            options.pop("http", http_client),
            **options,
        )

    return _make


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sample_phone():
    return "+57 300 111 2222"
