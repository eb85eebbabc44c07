"""
Protocol providers

Backends for the messaging-network capability the session core wraps.
Supports the Evolution API bridge (production) and Stub (development).
"""

from gateway.core.config import Settings
from gateway.providers.base import (
    ProtocolClient,
    ProtocolConnection,
    ProviderError,
    SentMessage,
)
from gateway.providers.evolution import EvolutionProtocolClient
from gateway.providers.stub import StubProtocolClient


def create_protocol_client(settings: Settings) -> ProtocolClient:
    """Build the backend selected by PROTOCOL_BACKEND."""
    if settings.PROTOCOL_BACKEND == "evolution":
        if not settings.EVOLUTION_API_URL:
            raise ValueError("EVOLUTION_API_URL is required for the evolution backend")
        return EvolutionProtocolClient(
            api_url=settings.EVOLUTION_API_URL,
            api_key=settings.EVOLUTION_API_KEY,
            poll_interval=settings.EVOLUTION_POLL_INTERVAL_SECONDS,
        )
    return StubProtocolClient(auto_pair_after=settings.STUB_AUTO_PAIR_SECONDS)


__all__ = [
    "ProtocolClient",
    "ProtocolConnection",
    "ProviderError",
    "SentMessage",
    "create_protocol_client",
]
