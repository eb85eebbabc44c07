"""
Tests for tenant management, the tenant directory and message queries.
"""

import pytest

from gateway.models.message import DeliveryStatus, MessageLog
from gateway.models.tenant import TenantStatus
from gateway.schemas.tenant import TenantCreate, TenantUpdate
from gateway.schemas.webhook import WebhookCreate
from gateway.services.message_service import MessageService
from gateway.services.tenant_service import (
    SqlTenantDirectory,
    TenantService,
    TenantStatusRecorder,
)
from gateway.services.webhook_service import WebhookService
from gateway.sessions.events import SessionConnected, SessionLoggedOut


def tenant_data(tenant_id="acme", email="ops@acme.example.com"):
    return TenantCreate(id=tenant_id, name="Acme Corp", email=email, password="s3cret-pass")


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


class TestTenantService:

    async def test_create_generates_api_key(self, db):
        tenant = await TenantService.create_tenant(db, tenant_data())

        assert len(tenant.api_key) == 64
        assert tenant.status == TenantStatus.active.value
        assert tenant.whatsapp_connected is False
        assert tenant.hashed_password != "s3cret-pass"

    async def test_duplicate_id_rejected(self, db):
        await TenantService.create_tenant(db, tenant_data())
        await db.commit()

        with pytest.raises(ValueError):
            await TenantService.create_tenant(db, tenant_data(email="other@acme.example.com"))

    async def test_authenticate(self, db):
        await TenantService.create_tenant(db, tenant_data())

        assert (await TenantService.authenticate(db, "OPS@acme.example.com", "s3cret-pass")).id == "acme"
        assert await TenantService.authenticate(db, "ops@acme.example.com", "wrong") is None

    async def test_update_status_and_password(self, db):
        tenant = await TenantService.create_tenant(db, tenant_data())
        await TenantService.update_tenant(
            db, tenant, TenantUpdate(status=TenantStatus.suspended, password="new-pass-123")
        )

        found = await TenantService.authenticate(db, "ops@acme.example.com", "new-pass-123")
        assert found.status == TenantStatus.suspended.value
        assert not found.is_active

    async def test_lookup_by_api_key(self, db):
        tenant = await TenantService.create_tenant(db, tenant_data())
        found = await TenantService.get_tenant_by_api_key(db, tenant.api_key)

        assert found.id == "acme"
        assert await TenantService.get_tenant_by_api_key(db, "nope") is None


class TestTenantDirectory:

    async def test_active_ids_exclude_suspended(self, db, session_factory):
        await TenantService.create_tenant(db, tenant_data("acme", "a@acme.example.com"))
        globex = await TenantService.create_tenant(db, tenant_data("globex", "g@globex.example.com"))
        await TenantService.update_tenant(db, globex, TenantUpdate(status=TenantStatus.suspended))
        await db.commit()

        directory = SqlTenantDirectory(session_factory)
        assert await directory.active_tenant_ids() == ["acme"]
        assert await directory.exists("globex") is True
        assert await directory.exists("initech") is False


class TestTenantStatusRecorder:

    async def test_mirrors_connection_events(self, db, session_factory):
        await TenantService.create_tenant(db, tenant_data())
        await db.commit()
        recorder = TenantStatusRecorder(session_factory)

        await recorder.on_session_event(SessionConnected(tenant_id="acme", identity="573001112222"))
        async with session_factory() as check:
            tenant = await TenantService.get_tenant_by_id(check, "acme")
            assert tenant.whatsapp_connected is True
            assert tenant.phone_number == "573001112222"

        await recorder.on_session_event(SessionLoggedOut(tenant_id="acme", remote=True))
        async with session_factory() as check:
            tenant = await TenantService.get_tenant_by_id(check, "acme")
            assert tenant.whatsapp_connected is False
            assert tenant.phone_number is None


class TestMessageService:

    @pytest.fixture
    async def logged(self, db):
        await TenantService.create_tenant(db, tenant_data("acme", "a@acme.example.com"))
        await TenantService.create_tenant(db, tenant_data("globex", "g@globex.example.com"))
        rows = [
            ("acme", "573009998888", DeliveryStatus.sent, 100),
            ("acme", "573009998888", DeliveryStatus.failed, 300),
            ("acme", "573007776666", DeliveryStatus.sent, 200),
            ("globex", "573009998888", DeliveryStatus.sent, 50),
        ]
        for tenant_id, phone, status, ms in rows:
            db.add(
                MessageLog(
                    tenant_id=tenant_id,
                    phone_number=phone,
                    message_type="text",
                    message_text="hola",
                    status=status.value,
                    response_time_ms=ms,
                )
            )
        await db.commit()

    async def test_list_is_scoped_to_tenant(self, db, logged):
        total, items = await MessageService.list_messages(db, "acme")

        assert total == 3
        assert {m.tenant_id for m in items} == {"acme"}

    async def test_status_filter_and_paging(self, db, logged):
        total, items = await MessageService.list_messages(db, "acme", status=DeliveryStatus.sent, limit=1)

        assert total == 2
        assert len(items) == 1

    async def test_by_phone_matches_digits(self, db, logged):
        total, _ = await MessageService.messages_by_phone(db, "acme", "+57 300 999 8888")
        assert total == 2

    async def test_admin_listing_spans_tenants(self, db, logged):
        total, _ = await MessageService.list_all_messages(db)
        assert total == 4

    async def test_stats(self, db, logged):
        stats = await MessageService.stats(db, "acme")

        assert stats["total"] == 3
        assert stats["sent"] == 2
        assert stats["failed"] == 1
        assert stats["success_rate"] == 66.67
        assert stats["avg_response_time_ms"] == 200
        assert sum(d["count"] for d in stats["daily"]) == 3

    async def test_stats_without_messages(self, db):
        stats = await MessageService.stats(db, "acme")
        assert stats["total"] == 0
        assert stats["success_rate"] == 0.0
        assert stats["daily"] == []


class TestWebhookService:

    async def test_register_replaces_existing(self, db):
        await TenantService.create_tenant(db, tenant_data())

        first = await WebhookService.register(
            db, "acme", WebhookCreate(url="https://hooks.example.com/in")
        )
        assert first.events == ["message"]

        await WebhookService.register(
            db, "acme", WebhookCreate(url="https://hooks.example.com/v2", events=[" status ", ""])
        )
        current = await WebhookService.get_webhook(db, "acme")

        assert current.url == "https://hooks.example.com/v2"
        assert current.events == ["status"]

    async def test_none_registered(self, db):
        assert await WebhookService.get_webhook(db, "acme") is None

    async def test_removed_with_tenant(self, db):
        tenant = await TenantService.create_tenant(db, tenant_data())
        await WebhookService.register(db, "acme", WebhookCreate(url="https://hooks.example.com/in"))

        await TenantService.delete_tenant(db, tenant)

        assert await WebhookService.get_webhook(db, "acme") is None
