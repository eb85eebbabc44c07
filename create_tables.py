"""
create_tables.py
----------------
One-shot script to create all database tables and, when
BOOTSTRAP_ADMIN_USERNAME / BOOTSTRAP_ADMIN_PASSWORD are set, the first
admin account. For production migrations, use Alembic instead.

Usage:
    python create_tables.py
"""

import asyncio

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from gateway.core.config import settings
from gateway.models import Base  # Imports all models so metadata is populated
from gateway.services.admin_service import AdminService


async def create_all_tables() -> None:
    engine = create_async_engine(settings.DATABASE_URL, echo=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully.")

    if settings.BOOTSTRAP_ADMIN_USERNAME and settings.BOOTSTRAP_ADMIN_PASSWORD:
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        async with session_factory() as db:
            existing = await AdminService.get_admin_by_username(db, settings.BOOTSTRAP_ADMIN_USERNAME)
            if existing is None:
                await AdminService.create_admin(
                    db, settings.BOOTSTRAP_ADMIN_USERNAME, settings.BOOTSTRAP_ADMIN_PASSWORD
                )
                await db.commit()
                print(f"Admin '{settings.BOOTSTRAP_ADMIN_USERNAME}' created.")
            else:
                print(f"Admin '{settings.BOOTSTRAP_ADMIN_USERNAME}' already exists.")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_all_tables())
