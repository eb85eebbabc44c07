"""
Tests for the request-scoped log context.
"""

import pytest
import structlog

from gateway.core.logging import bind_tenant, clear_log_context


@pytest.fixture(autouse=True)
def fresh_context():
    clear_log_context()
    yield
    clear_log_context()


class TestLogContext:

    def test_bind_tenant(self):
        bind_tenant("acme")
        assert structlog.contextvars.get_contextvars() == {"tenant_id": "acme"}

    def test_rebinding_replaces_tenant(self):
        bind_tenant("acme")
        bind_tenant("globex")
        assert structlog.contextvars.get_contextvars()["tenant_id"] == "globex"

    def test_clear(self):
        bind_tenant("acme")
        clear_log_context()
        assert structlog.contextvars.get_contextvars() == {}
