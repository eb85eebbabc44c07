"""
main.py
-------
FastAPI application factory and entry point.

Application lifecycle:
  1. App is created by create_application().
  2. lifespan builds the process-wide session core (protocol client,
     credential store, session manager, supervisor) and stores it on
     app.state; shutdown closes every session without unpairing it.
  3. Routers are registered with their URL prefixes.
  4. Exception handlers map session errors to status codes and
     normalise unexpected errors.

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app                       # production (single worker:
                                           # sessions live in-process)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from gateway.api.routes import admin, auth, groups, messages, portal, webhooks
from gateway.core.config import settings
from gateway.core.logging import clear_log_context, configure_logging, get_logger
from gateway.db.session import AsyncSessionLocal, engine
from gateway.providers import create_protocol_client
from gateway.services.audit_service import DatabaseAuditLogger
from gateway.services.delivery_service import DeliveryService
from gateway.services.tenant_service import SqlTenantDirectory, TenantStatusRecorder
from gateway.sessions.credentials import create_credential_store
from gateway.sessions.errors import (
    FetchFailed,
    InitializationFailed,
    InvalidDestination,
    LoggedOutRemotely,
    LookupFailed,
    NotConnected,
    SendFailed,
    SessionError,
    UnknownTenant,
)
from gateway.sessions.manager import create_session_manager
from gateway.sessions.supervisor import SessionSupervisor

logger = get_logger(__name__)

_SESSION_ERROR_STATUS = {
    UnknownTenant: status.HTTP_404_NOT_FOUND,
    InvalidDestination: status.HTTP_400_BAD_REQUEST,
    NotConnected: status.HTTP_503_SERVICE_UNAVAILABLE,
    InitializationFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
    SendFailed: status.HTTP_502_BAD_GATEWAY,
    FetchFailed: status.HTTP_502_BAD_GATEWAY,
    LookupFailed: status.HTTP_502_BAD_GATEWAY,
    LoggedOutRemotely: status.HTTP_409_CONFLICT,
}


def session_error_status(exc: SessionError) -> int:
    for cls in type(exc).__mro__:
        if cls in _SESSION_ERROR_STATUS:
            return _SESSION_ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Startup / shutdown lifecycle hook.

    Startup:
      - Configure structured logging
      - Build the session core and start the supervisor, which brings
        previously paired tenants back after STARTUP_DELAY_SECONDS

    Shutdown:
      - Stop the supervisor, close all sessions (credentials are kept)
      - Close HTTP clients and dispose the async engine
    """
    configure_logging()
    logger.info(
        "Starting up",
        app=settings.APP_NAME,
        env=settings.APP_ENV,
        debug=settings.DEBUG,
        protocol_backend=settings.PROTOCOL_BACKEND,
        credential_backend=settings.CREDENTIAL_BACKEND,
    )

    http = httpx.AsyncClient(timeout=settings.FETCH_TIMEOUT_SECONDS)
    client = create_protocol_client(settings)
    credentials = create_credential_store(settings, AsyncSessionLocal)
    manager = create_session_manager(
        settings,
        client,
        credentials,
        http,
        directory=SqlTenantDirectory(AsyncSessionLocal),
        observers=[TenantStatusRecorder(AsyncSessionLocal)],
    )
    supervisor = SessionSupervisor(
        manager,
        interval=settings.KEEPALIVE_INTERVAL_SECONDS,
        tenant_timeout=settings.TENANT_TIMEOUT_SECONDS,
        startup_delay=settings.STARTUP_DELAY_SECONDS,
    )

    app.state.session_manager = manager
    app.state.supervisor = supervisor
    app.state.delivery_service = DeliveryService(
        manager,
        DatabaseAuditLogger(AsyncSessionLocal),
        bulk_delay=settings.BULK_DELAY_SECONDS,
    )
    supervisor.start()

    yield

    logger.info("Shutting down, closing sessions")
    await supervisor.stop()
    await manager.shutdown()
    await client.close()
    await http.aclose()
    await engine.dispose()


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Multi-tenant WhatsApp messaging gateway: one paired session per "
            "client, API-key sending with a full delivery audit log."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def reset_log_context(request: Request, call_next):
        clear_log_context()
        return await call_next(request)

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(auth.router)
    app.include_router(portal.router)
    app.include_router(messages.router)
    app.include_router(groups.router)
    app.include_router(webhooks.router)
    app.include_router(admin.router)

    # ── Exception Handlers ────────────────────────────────────────────────────

    @app.exception_handler(SessionError)
    async def session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
        code = session_error_status(exc)
        logger.info(
            "Session error",
            path=request.url.path,
            error=type(exc).__name__,
            detail=exc.detail,
            status_code=code,
        )
        return JSONResponse(status_code=code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    # ── Health Check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health(request: Request) -> dict:
        database = "ok"
        try:
            async with AsyncSessionLocal() as db:
                await db.execute(text("SELECT 1"))
        except Exception as exc:
            logger.warning("Health check database ping failed", error=str(exc))
            database = "unavailable"

        manager = getattr(request.app.state, "session_manager", None)
        total, connected = manager.counts() if manager is not None else (0, 0)
        supervisor = getattr(request.app.state, "supervisor", None)
        return {
            "status": "ok" if database == "ok" else "degraded",
            "app": settings.APP_NAME,
            "env": settings.APP_ENV,
            "database": database,
            "sessions": {"total": total, "connected": connected},
            "supervisor": "running" if supervisor is not None and supervisor.running else "stopped",
        }

    return app


app = create_application()
