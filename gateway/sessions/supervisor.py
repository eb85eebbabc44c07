"""
sessions/supervisor.py
----------------------
Startup pass and periodic keepalive sweep over tenant sessions.

Startup: every active tenant in the directory gets ensure_initialized(),
so previously paired accounts come back without waiting for a request.

Sweep (every KEEPALIVE_INTERVAL_SECONDS): sessions that are IDLE or
DISCONNECTED without a pending reconnect are initialized again, as a
safety net for a missed close callback. Connected, connecting, and
retired sessions are left alone.

Each tenant is bounded by TENANT_TIMEOUT_SECONDS and its failures are
logged and counted; they never stop the pass for the other tenants.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from gateway.core.logging import get_logger
from gateway.sessions.errors import SessionError
from gateway.sessions.manager import SessionManager
from gateway.sessions.session import ConnectionState, being_cancelled

logger = get_logger(__name__)

_NEEDS_RESTART = (ConnectionState.IDLE, ConnectionState.DISCONNECTED)


@dataclass
class SweepReport:
    started: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class SessionSupervisor:

    def __init__(
        self,
        manager: SessionManager,
        *,
        interval: float,
        tenant_timeout: float,
        startup_delay: float = 0.0,
    ) -> None:
        self._manager = manager
        self._interval = interval
        self._tenant_timeout = tenant_timeout
        self._startup_delay = startup_delay
        self._task: Optional[asyncio.Task] = None

    async def _guarded(
        self,
        tenant_id: str,
        action: Callable[[], Awaitable[object]],
        report: SweepReport,
    ) -> None:
        try:
            await asyncio.wait_for(action(), self._tenant_timeout)
            report.started.append(tenant_id)
        except asyncio.TimeoutError:
            report.failed[tenant_id] = "timeout"
            logger.warning("Tenant timed out during sweep", tenant_id=tenant_id, timeout=self._tenant_timeout)
        except asyncio.CancelledError:
            # Only our own cancellation (stop()) ends the pass
            if being_cancelled():
                raise
            report.failed[tenant_id] = "cancelled"
            logger.warning("Tenant initialization was cancelled", tenant_id=tenant_id)
        except SessionError as exc:
            report.failed[tenant_id] = exc.detail
            logger.warning("Tenant could not be initialized", tenant_id=tenant_id, error=exc.detail)
        except Exception as exc:
            report.failed[tenant_id] = str(exc)
            logger.error("Unexpected sweep failure", tenant_id=tenant_id, error=str(exc), exc_info=True)

    async def bootstrap(self) -> SweepReport:
        """Initialize every active tenant once."""
        report = SweepReport()
        tenant_ids = await self._manager.directory.active_tenant_ids()
        logger.info("Initializing sessions for active tenants", count=len(tenant_ids))
        for tenant_id in tenant_ids:
            await self._guarded(
                tenant_id,
                lambda tid=tenant_id: self._manager.ensure_initialized(tid),
                report,
            )
        logger.info(
            "Startup initialization finished",
            started=len(report.started),
            failed=len(report.failed),
        )
        return report

    async def sweep(self) -> SweepReport:
        report = SweepReport()
        for tenant_id, session in self._manager.registry.list_active():
            if (
                session.retired
                or session.state not in _NEEDS_RESTART
                or session.initializing
                or session.reconnect_pending
            ):
                report.skipped.append(tenant_id)
                continue
            logger.info("Restarting idle session", tenant_id=tenant_id, state=session.state.value)
            await self._guarded(tenant_id, session.ensure_initialized, report)
        logger.info(
            "Keepalive sweep finished",
            restarted=len(report.started),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    async def run(self) -> None:
        await asyncio.sleep(self._startup_delay)
        try:
            await self.bootstrap()
        except Exception as exc:
            logger.error("Startup initialization failed", error=str(exc), exc_info=True)
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except Exception as exc:
                logger.error("Keepalive sweep failed", error=str(exc), exc_info=True)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
            logger.info("Supervisor started", interval=self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
