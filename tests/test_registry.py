"""
Tests for SessionRegistry and SessionHandle.
"""

import asyncio

import pytest

from warelay.bus.events import ConnectionUpdate, MessagesUpsert
from warelay.errors import AlreadyConnectedError
from warelay.session.handle import SessionHandle, SessionState
from warelay.session.registry import SessionRegistry


class TestSessionRegistry:
    """Tests for the user → session map."""

    def test_register_and_lookup(self):
        registry = SessionRegistry()
        handle = SessionHandle("u1", "c1")

        entry = registry.register("u1", "c1", handle)

        assert registry.lookup("u1") is entry
        assert entry.session is handle
        assert registry.owner_of("c1") == "u1"
        assert registry.session_for_client("c1") is handle
        assert "u1" in registry
        assert len(registry) == 1

    def test_register_same_user_twice(self):
        registry = SessionRegistry()
        registry.register("u1", "c1", SessionHandle("u1", "c1"))

        with pytest.raises(AlreadyConnectedError) as exc_info:
            registry.register("u1", "c2", SessionHandle("u1", "c2"))

        assert exc_info.value.user_id == "u1"
        assert registry.lookup("u1").client_id == "c1"

    def test_one_user_per_client(self):
        registry = SessionRegistry()
        registry.register("u1", "c1", SessionHandle("u1", "c1"))

        with pytest.raises(AlreadyConnectedError):
            registry.register("u2", "c1", SessionHandle("u2", "c1"))

        assert "u2" not in registry

    def test_unregister_is_idempotent(self):
        registry = SessionRegistry()
        registry.register("u1", "c1", SessionHandle("u1", "c1"))

        assert registry.unregister("u1") is not None
        assert registry.unregister("u1") is None
        assert registry.owner_of("c1") is None
        assert registry.session_for_client("c1") is None

    def test_unregister_if_owner(self):
        registry = SessionRegistry()
        registry.register("u1", "c2", SessionHandle("u1", "c2"))

        assert registry.unregister_if_owner("u1", "c1") is False
        assert "u1" in registry
        assert registry.unregister_if_owner("u1", "c2") is True
        assert "u1" not in registry

    def test_client_can_register_again_after_unregister(self):
        registry = SessionRegistry()
        registry.register("u1", "c1", SessionHandle("u1", "c1"))
        registry.unregister("u1")

        registry.register("u2", "c1", SessionHandle("u2", "c1"))

        assert registry.owner_of("c1") == "u2"
        assert registry.user_ids() == ["u2"]


class _Client:
    """Minimal listener holder; SessionHandle only needs on_event/remove_all_listeners."""

    def __init__(self):
        self.listener = None
        self.closed = False

    def on_event(self, listener):
        self.listener = listener

    def remove_all_listeners(self):
        self.listener = None

    async def close(self):
        self.closed = True


class TestSessionHandle:
    """Tests for per-user event serialization and teardown."""

    @pytest.mark.asyncio
    async def test_events_handled_in_order(self):
        handle = SessionHandle("u1", "c1")
        client = _Client()
        handle.attach(client)
        seen = []

        async def handler(h, event):
            await asyncio.sleep(0)
            seen.append(event.payload)

        handle.start_pump(handler)
        for i in range(5):
            client.listener(MessagesUpsert(payload=i))
        while len(seen) < 5:
            await asyncio.sleep(0.01)

        assert seen == [0, 1, 2, 3, 4]
        await handle.close()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_pump(self):
        handle = SessionHandle("u1", "c1")
        client = _Client()
        handle.attach(client)
        seen = []

        async def handler(h, event):
            if event.payload == "bad":
                raise ValueError("boom")
            seen.append(event.payload)

        handle.start_pump(handler)
        client.listener(MessagesUpsert(payload="bad"))
        client.listener(MessagesUpsert(payload="good"))
        while not seen:
            await asyncio.sleep(0.01)

        assert seen == ["good"]
        await handle.close()

    @pytest.mark.asyncio
    async def test_attach_replaces_client(self):
        handle = SessionHandle("u1", "c1")
        first, second = _Client(), _Client()
        handle.attach(first)

        previous = handle.attach(second)

        assert previous is first
        assert first.listener is None
        assert second.listener is not None
        assert handle.client is second

    @pytest.mark.asyncio
    async def test_close_detaches_and_drops_events(self):
        handle = SessionHandle("u1", "c1")
        client = _Client()
        handle.attach(client)
        listener = client.listener

        await handle.close()
        listener(ConnectionUpdate(connection="close", status_code=428))

        assert handle.state == SessionState.TERMINATED
        assert client.closed
        assert client.listener is None
        assert handle.client is None
        assert handle.pending_events == 0

    @pytest.mark.asyncio
    async def test_detach_discards_queued_events(self):
        handle = SessionHandle("u1", "c1")
        client = _Client()
        handle.attach(client)
        client.listener(MessagesUpsert(payload="a"))
        client.listener(MessagesUpsert(payload="b"))

        assert handle.pending_events == 2
        assert handle.detach() is client
        assert handle.pending_events == 0
        assert handle.terminated
