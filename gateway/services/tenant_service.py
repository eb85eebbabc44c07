"""
services/tenant_service.py
--------------------------
Business logic for tenant (client account) management.

Service layer is responsible for:
  - Constructing queries
  - Enforcing business rules (unique id, email and API key)
  - Returning domain objects (ORM models) to the route layer
  - Never returning HTTP responses (that's the route's job)

Also home to the two database-backed collaborators of the session core:
SqlTenantDirectory (which tenants exist / are active) and
TenantStatusRecorder (mirrors connection events onto the tenant row).
"""

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.core.logging import get_logger
from gateway.core.security import generate_api_key, hash_password, verify_password
from gateway.models.tenant import Tenant, TenantStatus
from gateway.schemas.tenant import TenantCreate, TenantUpdate
from gateway.sessions.events import (
    SessionConnected,
    SessionDisconnected,
    SessionEvent,
    SessionLoggedOut,
)

logger = get_logger(__name__)


class TenantService:

    @staticmethod
    async def create_tenant(db: AsyncSession, data: TenantCreate) -> Tenant:
        """
        Create a new tenant with a fresh API key.
        Raises ValueError if the id or email is already taken.
        """
        tenant = Tenant(
            id=data.id,
            name=data.name,
            email=data.email.lower(),
            hashed_password=hash_password(data.password),
            api_key=generate_api_key(),
            status=TenantStatus.active.value,
            whatsapp_connected=False,
        )
        db.add(tenant)
        try:
            await db.flush()  # Trigger DB constraints before commit
            await db.refresh(tenant)
            logger.info("Tenant created", tenant_id=tenant.id, name=tenant.name)
            return tenant
        except IntegrityError:
            await db.rollback()
            raise ValueError(f"Tenant '{data.id}' or email '{data.email}' already exists")

    @staticmethod
    async def get_tenant_by_id(db: AsyncSession, tenant_id: str) -> Tenant | None:
        result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_tenant_by_api_key(db: AsyncSession, api_key: str) -> Tenant | None:
        result = await db.execute(select(Tenant).where(Tenant.api_key == api_key))
        return result.scalar_one_or_none()

    @staticmethod
    async def authenticate(db: AsyncSession, email: str, password: str) -> Tenant | None:
        """
        Verify portal credentials and return the Tenant if valid, else None.
        Email lookup is case-insensitive. Suspension is checked by the caller.
        """
        result = await db.execute(select(Tenant).where(Tenant.email == email.lower()))
        tenant = result.scalar_one_or_none()
        if tenant is None or not verify_password(password, tenant.hashed_password):
            return None
        return tenant

    @staticmethod
    async def list_tenants(db: AsyncSession) -> list[Tenant]:
        result = await db.execute(select(Tenant).order_by(Tenant.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def update_tenant(db: AsyncSession, tenant: Tenant, data: TenantUpdate) -> Tenant:
        """Apply the fields present in `data`. Raises ValueError on duplicate email."""
        if data.name is not None:
            tenant.name = data.name.strip()
        if data.email is not None:
            tenant.email = data.email.lower()
        if data.password is not None:
            tenant.hashed_password = hash_password(data.password)
        if data.status is not None:
            tenant.status = data.status.value
        try:
            await db.flush()
            await db.refresh(tenant)
        except IntegrityError:
            await db.rollback()
            raise ValueError(f"Email '{data.email}' is already registered")
        logger.info("Tenant updated", tenant_id=tenant.id, status=tenant.status)
        return tenant

    @staticmethod
    async def delete_tenant(db: AsyncSession, tenant: Tenant) -> None:
        await db.delete(tenant)
        await db.flush()
        logger.info("Tenant deleted", tenant_id=tenant.id)


class SqlTenantDirectory:
    """Answers the session core's tenant lookups from the tenants table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def exists(self, tenant_id: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(select(Tenant.id).where(Tenant.id == tenant_id))
            return result.scalar_one_or_none() is not None

    async def active_tenant_ids(self) -> list[str]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Tenant.id)
                .where(Tenant.status == TenantStatus.active.value)
                .order_by(Tenant.id)
            )
            return list(result.scalars().all())


class TenantStatusRecorder:
    """
    Session observer that keeps tenants.whatsapp_connected and
    tenants.phone_number in step with the live connection.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def on_session_event(self, event: SessionEvent) -> None:
        if isinstance(event, SessionConnected):
            values = {"whatsapp_connected": True, "phone_number": event.identity}
        elif isinstance(event, SessionDisconnected):
            values = {"whatsapp_connected": False}
        elif isinstance(event, SessionLoggedOut):
            values = {"whatsapp_connected": False, "phone_number": None}
        else:
            return

        async with self._session_factory() as db:
            await db.execute(
                update(Tenant).where(Tenant.id == event.tenant_id).values(**values)
            )
            await db.commit()
        logger.debug("Tenant connection status recorded", tenant_id=event.tenant_id, **values)
