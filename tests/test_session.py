"""
Tests for the ProtocolSession state machine, sending and logout.
"""

import asyncio
import json

import httpx
import pytest

from conftest import RecordingObserver, pdf_transport, wait_until
from gateway.providers.base import DisconnectCause, GroupInfo, ProviderError
from gateway.providers.stub import StubProtocolClient
from gateway.sessions.errors import (
    FetchFailed,
    InitializationFailed,
    InvalidDestination,
    LoggedOutRemotely,
    LookupFailed,
    NotConnected,
    SendFailed,
)
from gateway.sessions.events import SessionConnected, SessionDisconnected, SessionLoggedOut
from gateway.sessions.session import ConnectionState


class FailingClient(StubProtocolClient):
    async def connect(self, tenant_id, resume_material):
        raise ProviderError("bridge unreachable", code="CONNECTION_ERROR", retryable=True)


class HangingClient(StubProtocolClient):
    async def connect(self, tenant_id, resume_material):
        await asyncio.Event().wait()


async def connected_session(make_session, stub_client, phone="573001112222", **options):
    session = make_session(**options)
    await session.ensure_initialized()
    stub_client.latest(session.tenant_id).pair(phone)
    await wait_until(lambda: session.state is ConnectionState.CONNECTED)
    return session


class TestInitialization:

    async def test_new_tenant_awaits_pairing(self, make_session, stub_client):
        """Test a tenant without credentials gets a scannable QR."""
        session = make_session()
        assert session.state is ConnectionState.IDLE

        await session.ensure_initialized()
        await wait_until(lambda: session.state is ConnectionState.AWAITING_PAIRING)

        qr = session.pairing_challenge()
        assert qr.startswith("data:image/png;base64,")
        assert session.resolved_identity is None
        assert not session.status().connected

    async def test_pairing_connects_and_stores_credentials(
        self, make_session, stub_client, credentials
    ):
        session = await connected_session(make_session, stub_client)

        assert session.resolved_identity == "573001112222"
        assert session.pairing_challenge() is None
        assert json.loads(credentials.materials["acme"]) == {"identity": "573001112222"}

    async def test_concurrent_calls_share_one_connection(self, make_session, stub_client):
        """Test simultaneous ensure_initialized calls open a single connection."""
        session = make_session()
        await asyncio.gather(*(session.ensure_initialized() for _ in range(5)))
        await session.ensure_initialized()

        assert len(stub_client.connections_for("acme")) == 1

    async def test_stored_credentials_resume_without_qr(
        self, make_session, stub_client, credentials
    ):
        credentials.materials["acme"] = json.dumps({"identity": "573001112222"}).encode()
        session = make_session()

        await session.ensure_initialized()
        await wait_until(lambda: session.state is ConnectionState.CONNECTED)

        assert session.resolved_identity == "573001112222"
        assert session.pairing_challenge() is None

    async def test_connect_failure_returns_to_idle(self, make_session):
        session = make_session(client=FailingClient())

        with pytest.raises(InitializationFailed):
            await session.ensure_initialized()
        assert session.state is ConnectionState.IDLE
        assert not session.initializing

    async def test_wait_for_times_out(self, make_session):
        session = make_session()
        assert await session.wait_for(ConnectionState.CONNECTED, timeout=0.05) is False


class TestIdentityInvariant:

    async def test_identity_cleared_on_disconnect(self, make_session, stub_client):
        """Test the resolved identity only exists while connected."""
        session = await connected_session(make_session, stub_client, reconnect_delay=10)
        stub_client.latest("acme").drop(DisconnectCause.RETRYABLE, "stream error")
        await wait_until(lambda: session.state is ConnectionState.DISCONNECTED)

        assert session.resolved_identity is None
        assert session.reconnect_pending
        await session.close()


class TestSending:

    async def test_send_requires_connection(self, make_session, stub_client):
        session = make_session()
        await session.ensure_initialized()
        await wait_until(lambda: session.state is ConnectionState.AWAITING_PAIRING)

        with pytest.raises(NotConnected):
            await session.send_message("573009998888", "hola")
        assert stub_client.sent_messages == []

    async def test_send_text(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)

        sent = await session.send_message("+57 300 999 8888", "hola")

        assert sent.message_id.startswith("STUB")
        assert stub_client.sent_messages[0]["to"] == "573009998888@s.whatsapp.net"
        assert stub_client.sent_messages[0]["text"] == "hola"

    async def test_invalid_destination(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)
        with pytest.raises(InvalidDestination):
            await session.send_message("not a number", "hola")

    async def test_provider_failure_becomes_send_failed(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)
        stub_client.fail_sends = True
        with pytest.raises(SendFailed):
            await session.send_message("573009998888", "hola")

    async def test_verify(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)
        stub_client.unregistered.add("573000000000")

        assert await session.verify("573009998888") is True
        assert await session.verify("+57 300 000 0000") is False


class TestSendFile:

    async def test_document_forwarded(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)

        await session.send_file(
            "573009998888",
            "https://files.example.com/invoices/factura-10.pdf?sig=1",
            caption="Su factura",
        )

        document = stub_client.sent_messages[0]
        assert document["type"] == "document"
        assert document["file_name"] == "factura-10.pdf"
        assert document["mime_type"] == "application/pdf"
        assert document["caption"] == "Su factura"
        assert document["size"] == len(b"%PDF-1.4 test document")

    async def test_mime_type_guessed_from_name(self, make_session, stub_client):
        """Test a generic served type falls back to the file extension."""
        async with httpx.AsyncClient(
            transport=pdf_transport(content_type="application/octet-stream")
        ) as http:
            session = await connected_session(make_session, stub_client, http=http)
            await session.send_file(
                "573009998888", "https://x.example.com/file", file_name="planilla.csv"
            )

        document = stub_client.sent_messages[0]
        assert document["file_name"] == "planilla.csv"
        assert document["mime_type"] == "text/csv"

    async def test_unregistered_recipient_not_downloaded(self, make_session, stub_client):
        transport = pdf_transport()
        async with httpx.AsyncClient(transport=transport) as http:
            session = await connected_session(make_session, stub_client, http=http)
            stub_client.unregistered.add("573000000000")

            with pytest.raises(SendFailed):
                await session.send_file("573000000000", "https://x.example.com/a.pdf")

        assert transport.requests == []
        assert stub_client.sent_messages == []

    async def test_verification_can_be_disabled(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client, verify_before_file=False)
        stub_client.unregistered.add("573000000000")

        await session.send_file("573000000000", "https://x.example.com/a.pdf")
        assert len(stub_client.sent_messages) == 1

    async def test_download_error(self, make_session, stub_client):
        async with httpx.AsyncClient(transport=pdf_transport(status_code=404)) as http:
            session = await connected_session(make_session, stub_client, http=http)
            with pytest.raises(FetchFailed):
                await session.send_file("573009998888", "https://x.example.com/missing.pdf")

    async def test_download_size_limit(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client, max_download_bytes=8)
        with pytest.raises(FetchFailed):
            await session.send_file("573009998888", "https://x.example.com/a.pdf")
        assert stub_client.sent_messages == []

    async def test_malformed_url(self, make_session, stub_client):
        transport = pdf_transport()
        async with httpx.AsyncClient(transport=transport) as http:
            session = await connected_session(make_session, stub_client, http=http)
            with pytest.raises(FetchFailed, match="Invalid URL"):
                await session.send_file("573009998888", "http://[::1/doc.pdf")

        assert transport.requests == []
        assert stub_client.sent_messages == []


class TestGroupsAndProfiles:

    async def test_list_groups(self, make_session, stub_client):
        stub_client.groups = [GroupInfo(id="120363025246125486@g.us", name="Ventas", participants=12)]
        session = await connected_session(make_session, stub_client)

        groups = await session.list_groups()
        assert [g.name for g in groups] == ["Ventas"]

    async def test_list_groups_requires_connection(self, make_session):
        with pytest.raises(NotConnected):
            await make_session().list_groups()

    async def test_group_listing_failure(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)
        stub_client.latest("acme").is_open = False

        with pytest.raises(LookupFailed):
            await session.list_groups()

    async def test_send_group_message(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)

        sent = await session.send_group_message("120363025246125486", "hola grupo")

        assert sent.message_id
        assert stub_client.sent_messages[-1]["to"] == "120363025246125486@g.us"

    async def test_send_group_message_rejects_phone_numbers(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)
        with pytest.raises(InvalidDestination):
            await session.send_group_message("+57 300 999 8888", "hola")

    async def test_profile_picture(self, make_session, stub_client):
        stub_client.profile_pictures["573009998888"] = "https://pps.example.com/p.jpg"
        session = await connected_session(make_session, stub_client)

        assert await session.profile_picture("+57 300 999 8888") == "https://pps.example.com/p.jpg"
        assert await session.profile_picture("573000000000") is None

    async def test_profile_picture_failure_is_none(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client)
        stub_client.latest("acme").is_open = False

        assert await session.profile_picture("573009998888") is None


class TestReconnect:

    async def test_retryable_close_reconnects_once(self, make_session, stub_client):
        """Test a dropped connection is re-established exactly once."""
        session = await connected_session(make_session, stub_client)
        observer = RecordingObserver()
        session.subscribe(observer)

        stub_client.latest("acme").drop(DisconnectCause.RETRYABLE, "connection reset")
        await wait_until(lambda: len(stub_client.connections_for("acme")) == 2)
        await wait_until(lambda: session.state is ConnectionState.CONNECTED)
        await asyncio.sleep(0.2)

        assert len(stub_client.connections_for("acme")) == 2
        assert session.resolved_identity == "573001112222"
        assert isinstance(observer.events[0], SessionDisconnected)
        assert isinstance(observer.events[-1], SessionConnected)

    async def test_explicit_initialize_cancels_pending_reconnect(self, make_session, stub_client):
        session = await connected_session(make_session, stub_client, reconnect_delay=0.2)
        stub_client.latest("acme").drop()
        await wait_until(lambda: session.reconnect_pending)

        await session.ensure_initialized()
        assert not session.reconnect_pending
        await asyncio.sleep(0.3)

        assert len(stub_client.connections_for("acme")) == 2


class TestLogout:

    async def test_remote_logout_purges_and_retires(
        self, make_session, stub_client, credentials
    ):
        session = await connected_session(make_session, stub_client)
        observer = RecordingObserver()
        session.subscribe(observer)

        stub_client.latest("acme").drop(DisconnectCause.LOGGED_OUT)
        await wait_until(lambda: session.state is ConnectionState.LOGGED_OUT)
        await asyncio.sleep(0.1)

        assert session.retired
        assert "acme" not in credentials.materials
        assert observer.events[-1] == SessionLoggedOut(tenant_id="acme", remote=True)
        assert len(stub_client.connections_for("acme")) == 1
        with pytest.raises(LoggedOutRemotely):
            await session.ensure_initialized()

    async def test_explicit_logout(self, make_session, stub_client, credentials):
        session = await connected_session(make_session, stub_client)
        connection = stub_client.latest("acme")

        await session.logout()

        assert session.state is ConnectionState.IDLE
        assert session.resolved_identity is None
        assert connection.logged_out and connection.disconnected
        assert "acme" not in credentials.materials
        with pytest.raises(InitializationFailed):
            await session.ensure_initialized()

    async def test_logout_during_initialization_fails_waiting_callers(
        self, make_session, credentials
    ):
        """Test callers sharing an attempt get a typed error when it is cut short."""
        session = make_session(client=HangingClient())
        waiting = asyncio.create_task(session.ensure_initialized())
        await wait_until(lambda: session.initializing)

        await session.logout()

        with pytest.raises(InitializationFailed):
            await waiting
        assert session.state is ConnectionState.IDLE
        assert credentials.purged == ["acme"]

    async def test_logout_purges_even_if_remote_logout_fails(
        self, make_session, stub_client, credentials
    ):
        session = await connected_session(make_session, stub_client)
        stub_client.fail_logout = True

        await session.logout()

        assert session.state is ConnectionState.IDLE
        assert credentials.purged == ["acme"]

    async def test_close_keeps_credentials(self, make_session, stub_client, credentials):
        session = await connected_session(make_session, stub_client)
        await session.close()

        assert session.state is ConnectionState.IDLE
        assert "acme" in credentials.materials
