"""
Pytest configuration and fixtures.

FakeProtocolClient stands in for the WhatsApp bridge: it records every call
and lets a test push protocol events exactly as the bridge would.
"""

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from warelay.bus.queue import NotificationBus
from warelay.config.schema import ReconnectConfig
from warelay.credentials.store import FileCredentialStore
from warelay.protocol.base import ProtocolClient
from warelay.relay.orchestrator import ConnectionOrchestrator
from warelay.session.registry import SessionRegistry
from warelay.store.manager import UserStoreManager


class FakeProtocolClient(ProtocolClient):
    name = "fake"

    def __init__(self, user_id: str, groups: list[dict] | None = None):
        super().__init__(user_id)
        self.groups = groups or []
        self.connect_calls: list[tuple[dict, Any]] = []
        self.sent: list[tuple[str, str]] = []
        self.closed = False
        self.connect_error: Exception | None = None
        self.connect_delay = 0.0
        self.send_error: Exception | None = None

    def emit(self, event) -> None:
        self._emit(event)

    async def connect(self, creds, version=None) -> None:
        self.connect_calls.append((creds, version))
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error:
            raise self.connect_error

    async def fetch_groups(self) -> list[dict]:
        return list(self.groups)

    async def send_text(self, to: str, text: str) -> Any:
        if self.send_error:
            raise self.send_error
        self.sent.append((to, text))
        return {"key": {"remoteJid": to, "id": f"msg-{len(self.sent)}"}}

    async def close(self) -> None:
        self.closed = True


class FakeClientFactory:
    """Creates FakeProtocolClient instances and keeps every one it made."""

    def __init__(self):
        self.clients: list[FakeProtocolClient] = []
        self.groups: list[dict] = []
        self.connect_error: Exception | None = None
        self.connect_delay = 0.0

    def __call__(self, user_id: str) -> FakeProtocolClient:
        client = FakeProtocolClient(user_id, groups=self.groups)
        client.connect_error = self.connect_error
        client.connect_delay = self.connect_delay
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeProtocolClient:
        return self.clients[-1]


async def _eventually(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds, or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def eventually():
    return _eventually


@pytest.fixture
def factory():
    return FakeClientFactory()


@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def stores(tmp_path):
    return UserStoreManager(tmp_path / "stores", flush_interval_s=3600)


@pytest.fixture
def credentials(tmp_path):
    return FileCredentialStore(tmp_path / "auth")


@pytest.fixture
def reconnect_policy():
    return ReconnectConfig(failure_delay_ms=0)


@pytest_asyncio.fixture
async def orchestrator(registry, stores, credentials, bus, factory, reconnect_policy):
    orch = ConnectionOrchestrator(
        registry=registry,
        stores=stores,
        credentials=credentials,
        bus=bus,
        client_factory=factory,
        auth_timeout_s=2.0,
        reconnect=reconnect_policy,
    )
    yield orch
    await orch.shutdown()


def events_of(notifications, event: str) -> list:
    return [n.payload for n in notifications if n.event == event]


@pytest.fixture
def payloads():
    """Filter drained notifications down to the payloads of one event name."""
    return events_of
