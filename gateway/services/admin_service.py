"""
services/admin_service.py
-------------------------
Operator accounts for the admin panel.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.logging import get_logger
from gateway.core.security import hash_password, verify_password
from gateway.models.admin import AdminUser

logger = get_logger(__name__)


class AdminService:

    @staticmethod
    async def create_admin(db: AsyncSession, username: str, password: str) -> AdminUser:
        """Raises ValueError if the username is taken."""
        admin = AdminUser(username=username, hashed_password=hash_password(password))
        db.add(admin)
        try:
            await db.flush()
            await db.refresh(admin)
            logger.info("Admin created", admin_id=admin.id, username=username)
            return admin
        except IntegrityError:
            await db.rollback()
            raise ValueError(f"Admin '{username}' already exists")

    @staticmethod
    async def get_admin_by_id(db: AsyncSession, admin_id: str) -> AdminUser | None:
        result = await db.execute(select(AdminUser).where(AdminUser.id == admin_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_admin_by_username(db: AsyncSession, username: str) -> AdminUser | None:
        result = await db.execute(select(AdminUser).where(AdminUser.username == username))
        return result.scalar_one_or_none()

    @staticmethod
    async def authenticate(db: AsyncSession, username: str, password: str) -> AdminUser | None:
        admin = await AdminService.get_admin_by_username(db, username)
        if admin is None or not verify_password(password, admin.hashed_password):
            return None
        return admin
