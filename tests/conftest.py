"""Pytest configuration and shared fixtures."""

import os
from typing import Any, Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing settings
os.environ.update({
    "ENVIRONMENT": "development",
    "MAX_SESSIONS": "5",
    "TELEPHONY_ENABLED": "false",  # Relay-only; telephony is mocked per test
    "METRICS_ENABLED": "true",
})

from webphone.exceptions import TransportError
from webphone.signaling.router import RelayRouter
from webphone.signaling.session import SessionRegistry
from webphone.signaling.state_machine import SignalingStateMachine
from webphone.telephony.ari_client import AriClient


class FakeTransport:
    """In-memory client transport recording what the router sends."""

    def __init__(self, session_id: str = "") -> None:
        self.session_id = session_id
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None
        self.fail = False

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise TransportError("connection reset", self.session_id)
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        """Sent messages of one kind, in order."""
        return [m for m in self.sent if m["type"] == kind]


@pytest.fixture
def test_settings():
    """Provide test settings instance."""
    from webphone.config.settings import Settings
    return Settings(max_sessions=5, telephony_enabled=False)


@pytest.fixture
def registry() -> SessionRegistry:
    """Fresh session registry."""
    return SessionRegistry(max_sessions=10)


@pytest.fixture
def machine() -> SignalingStateMachine:
    """Fresh state machine."""
    return SignalingStateMachine(max_protocol_violations=3)


@pytest.fixture
def telephony() -> AsyncMock:
    """ARI client double handing out ch1/br1."""
    client = AsyncMock(spec=AriClient)
    client.allocate_channel.return_value = "ch1"
    client.allocate_bridge.return_value = "br1"
    return client


@pytest.fixture
def router(registry, machine, telephony) -> RelayRouter:
    """Relay router bridged through the mocked PBX."""
    return RelayRouter(registry, machine, telephony=telephony, endpoint_ref="PJSIP/1001")


@pytest.fixture
def relay_only_router(registry, machine) -> RelayRouter:
    """Relay router without telephony."""
    return RelayRouter(registry, machine)


@pytest.fixture
def connect():
    """Connect sessions to a router; returns their FakeTransports by id."""

    async def _connect(relay: RelayRouter, *session_ids: str) -> dict[str, FakeTransport]:
        transports = {}
        for session_id in session_ids:
            transport = FakeTransport(session_id)
            await relay.on_connect(session_id, transport)
            transports[session_id] = transport
        return transports

    return _connect


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Provide FastAPI test client."""
    from webphone.main import app
    with TestClient(app) as c:
        yield c
