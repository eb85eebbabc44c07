"""
sessions/credentials.py
-----------------------
Credential Store adapters: persist the opaque resume material a protocol
session needs to reconnect without a new QR scan.

Two implementations:
  - DatabaseCredentialStore  one row per tenant in session_credentials
  - FileCredentialStore      one directory per tenant under CREDENTIALS_DIR
"""

import asyncio
import re
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.core.config import Settings
from gateway.core.logging import get_logger
from gateway.models.credential import SessionCredential

logger = get_logger(__name__)


class CredentialStore(ABC):

    @abstractmethod
    async def load(self, tenant_id: str) -> Optional[bytes]:
        """Return stored material, or None if the tenant never paired."""
        ...

    @abstractmethod
    async def save(self, tenant_id: str, material: bytes) -> None:
        ...

    @abstractmethod
    async def purge(self, tenant_id: str) -> None:
        """Remove stored material. Succeeds if there is nothing to remove."""
        ...


class DatabaseCredentialStore(CredentialStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, tenant_id: str) -> Optional[bytes]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(SessionCredential.material).where(
                    SessionCredential.tenant_id == tenant_id
                )
            )
            return result.scalar_one_or_none()

    async def save(self, tenant_id: str, material: bytes) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await db.merge(SessionCredential(tenant_id=tenant_id, material=material))
        logger.debug("Resume material saved", tenant_id=tenant_id, size=len(material))

    async def purge(self, tenant_id: str) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await db.execute(
                    delete(SessionCredential).where(SessionCredential.tenant_id == tenant_id)
                )
        logger.info("Resume material purged", tenant_id=tenant_id)


class FileCredentialStore(CredentialStore):
    """
    <root>/<tenant_id>/resume.bin

    Writes go to a temporary file first and are renamed into place, so a
    crash never leaves half-written material behind.
    """

    FILE_NAME = "resume.bin"
    _UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _folder(self, tenant_id: str) -> Path:
        safe = self._UNSAFE.sub("_", tenant_id)
        if safe in ("", ".", ".."):
            raise ValueError(f"Unusable tenant id for a credential folder: {tenant_id!r}")
        return self._root / safe

    async def load(self, tenant_id: str) -> Optional[bytes]:
        path = self._folder(tenant_id) / self.FILE_NAME
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_bytes)

    async def save(self, tenant_id: str, material: bytes) -> None:
        folder = self._folder(tenant_id)

        def _write() -> None:
            folder.mkdir(parents=True, exist_ok=True)
            tmp = folder / f"{self.FILE_NAME}.tmp"
            tmp.write_bytes(material)
            tmp.replace(folder / self.FILE_NAME)

        await asyncio.to_thread(_write)

    async def purge(self, tenant_id: str) -> None:
        folder = self._folder(tenant_id)
        await asyncio.to_thread(shutil.rmtree, folder, True)
        logger.info("Resume material purged", tenant_id=tenant_id, path=str(folder))


def create_credential_store(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> CredentialStore:
    if settings.CREDENTIAL_BACKEND == "file":
        return FileCredentialStore(settings.CREDENTIALS_DIR)
    return DatabaseCredentialStore(session_factory)
