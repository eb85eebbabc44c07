"""
Tests for SessionRegistry and SessionManager.
"""

import asyncio

import pytest

from conftest import StaticDirectory, wait_until
from gateway.providers.base import DisconnectCause
from gateway.providers.stub import StubProtocolClient
from gateway.sessions.errors import UnknownTenant
from gateway.sessions.manager import SessionManager
from gateway.sessions.registry import SessionRegistry
from gateway.sessions.session import ConnectionState


class GatedClient(StubProtocolClient):
    """Blocks connect() for the tenants in `held` until released."""

    def __init__(self, *held: str) -> None:
        super().__init__()
        self.held = set(held)
        self.release = asyncio.Event()

    async def connect(self, tenant_id, resume_material):
        if tenant_id in self.held:
            await self.release.wait()
        return await super().connect(tenant_id, resume_material)


@pytest.fixture
def registry(make_session):
    calls = []

    def factory(tenant_id):
        calls.append(tenant_id)
        return make_session(tenant_id)

    reg = SessionRegistry(factory)
    reg.factory_calls = calls
    return reg


@pytest.fixture
def manager(registry, credentials):
    return SessionManager(registry, StaticDirectory("acme", "globex"), credentials, pairing_wait=0.5)


class TestSessionRegistry:

    async def test_concurrent_get_or_create_returns_one_session(self, registry):
        sessions = await asyncio.gather(*(registry.get_or_create("acme") for _ in range(10)))

        assert all(s is sessions[0] for s in sessions)
        assert registry.factory_calls == ["acme"]
        assert len(registry) == 1

    async def test_get_never_creates(self, registry):
        assert registry.get("acme") is None
        assert "acme" not in registry

    async def test_remove_with_stale_instance_is_ignored(self, registry, make_session):
        current = await registry.get_or_create("acme")

        assert await registry.remove("acme", expected=make_session("acme")) is None
        assert registry.get("acme") is current
        assert await registry.remove("acme", expected=current) is current
        assert len(registry) == 0

    async def test_remote_logout_removes_session(self, registry, stub_client):
        session = await registry.get_or_create("acme")
        await session.ensure_initialized()
        stub_client.latest("acme").pair()
        await wait_until(lambda: session.state is ConnectionState.CONNECTED)

        stub_client.latest("acme").drop(DisconnectCause.LOGGED_OUT)
        await wait_until(lambda: "acme" not in registry)

        replacement = await registry.get_or_create("acme")
        assert replacement is not session

    async def test_slow_tenant_does_not_block_others(self, make_session):
        """Test one tenant's handshake never delays another tenant."""
        client = GatedClient("slow")
        registry = SessionRegistry(lambda tid: make_session(tid, client=client))

        slow = await registry.get_or_create("slow")
        slow_init = asyncio.create_task(slow.ensure_initialized())
        await asyncio.sleep(0)

        fast = await asyncio.wait_for(registry.get_or_create("fast"), 0.5)
        await asyncio.wait_for(fast.ensure_initialized(), 0.5)
        await wait_until(lambda: fast.state is ConnectionState.AWAITING_PAIRING)
        assert slow.state is ConnectionState.INITIALIZING

        client.release.set()
        await slow_init
        await wait_until(lambda: slow.state is ConnectionState.AWAITING_PAIRING)


class TestSessionManager:

    async def test_remote_logout_then_fresh_pairing(self, manager, registry, stub_client):
        """Test a device-side logout is followed by a new pairing cycle on demand."""
        session = await manager.ensure_initialized("acme")
        await wait_until(lambda: session.state is ConnectionState.AWAITING_PAIRING)
        first_qr = session.pairing_challenge()
        stub_client.latest("acme").pair()
        await wait_until(lambda: session.state is ConnectionState.CONNECTED)

        stub_client.latest("acme").drop(DisconnectCause.LOGGED_OUT)
        await wait_until(lambda: "acme" not in registry)

        fresh = await manager.ensure_initialized("acme")
        await wait_until(lambda: fresh.state is ConnectionState.AWAITING_PAIRING)

        assert fresh is not session
        assert fresh.pairing_challenge() != first_qr
        assert len(stub_client.connections_for("acme")) == 2
        assert stub_client.latest("acme").resume_material is None

    async def test_unknown_tenant(self, manager, registry):
        with pytest.raises(UnknownTenant):
            await manager.ensure_initialized("initech")
        assert "initech" not in registry

    async def test_status_of_absent_tenant_has_no_side_effects(self, manager, registry):
        status = manager.get_status("acme")

        assert status.state is ConnectionState.IDLE
        assert not status.connected
        assert "acme" not in registry

    async def test_pairing_challenge_waits_for_qr(self, manager):
        await manager.ensure_initialized("acme")

        qr = await manager.get_pairing_challenge("acme", wait=True)
        assert qr.startswith("data:image/png;base64,")

    async def test_pairing_challenge_without_session(self, manager):
        assert await manager.get_pairing_challenge("acme", wait=True) is None

    async def test_tenants_are_isolated(self, manager, stub_client):
        await manager.ensure_initialized("acme")
        await manager.ensure_initialized("globex")
        stub_client.latest("acme").pair("573001112222")
        await wait_until(lambda: manager.get_status("acme").connected)

        assert manager.get_status("acme").identity == "573001112222"
        assert manager.get_status("globex").state is ConnectionState.AWAITING_PAIRING
        assert manager.counts() == (2, 1)

        await manager.send_message("acme", "573009998888", "hola")
        assert [m["tenant_id"] for m in stub_client.sent_messages] == ["acme"]

    async def test_logout_forgets_session(self, manager, registry, credentials):
        await manager.ensure_initialized("acme")

        assert await manager.logout("acme") is True
        assert "acme" not in registry
        assert credentials.purged == ["acme"]

    async def test_logout_without_session_still_purges(self, manager, credentials):
        credentials.materials["acme"] = b"{}"

        assert await manager.logout("acme") is False
        assert "acme" not in credentials.materials

    async def test_shutdown_closes_everything(self, manager, registry, stub_client, credentials):
        await manager.ensure_initialized("acme")
        stub_client.latest("acme").pair()
        await wait_until(lambda: manager.get_status("acme").connected)

        await manager.shutdown()

        assert len(registry) == 0
        assert stub_client.latest("acme").disconnected
        assert "acme" in credentials.materials
