"""
Tests for EventRelay: the Socket.IO boundary between frontend clients and
the session core.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from warelay.bus.events import (
    STATUS_ALREADY_CONNECTED,
    STATUS_CONNECTED,
    ClientNotification,
    ConnectionUpdate,
)
from warelay.relay.server import EventRelay


@pytest.fixture
def sio():
    server = MagicMock()
    server.emit = AsyncMock()
    return server


@pytest_asyncio.fixture
async def relay(sio, registry, orchestrator, stores, bus):
    return EventRelay(sio, registry, orchestrator, stores, bus)


async def _authenticated(relay, factory, bus, eventually, sid="c1", user_id="u1"):
    """auth, then let the fake protocol client report the connection as open."""
    await relay.authenticate(sid, {"userId": user_id})
    factory.last.emit(ConnectionUpdate(connection="open"))
    await eventually(lambda: bus.outbound_size >= 1)
    return bus.drain()


class TestRegistration:
    """Tests for handler wiring."""

    @pytest.mark.asyncio
    async def test_handlers_registered(self, relay, sio):
        events = [call.args[0] for call in sio.on.call_args_list]

        assert events == ["connect", "disconnect", "auth", "sendMessage", "listGroups"]

    @pytest.mark.asyncio
    async def test_deliver_emits_to_client(self, relay, sio):
        await relay.deliver(ClientNotification(client_id="c1", event="status", payload="connected"))

        sio.emit.assert_awaited_once_with("status", "connected", to="c1")


class TestAuth:
    """Tests for the auth event."""

    @pytest.mark.asyncio
    async def test_missing_user_id(self, relay, bus, registry, factory, payloads):
        await relay.authenticate("c1", {})
        await relay.authenticate("c1", None)
        await relay.authenticate("c1", {"userId": "  "})

        assert payloads(bus.drain(), "error") == ["userId not provided"] * 3
        assert len(registry) == 0
        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_auth_then_connected(self, relay, bus, registry, factory, eventually, payloads):
        notifications = await _authenticated(relay, factory, bus, eventually)

        assert payloads(notifications, "status") == [STATUS_CONNECTED]
        assert registry.owner_of("c1") == "u1"

    @pytest.mark.asyncio
    async def test_already_connected(self, relay, bus, registry, factory, payloads):
        await relay.authenticate("c1", {"userId": "u1"})

        await relay.authenticate("c2", {"userId": "u1"})

        notifications = bus.drain()
        assert payloads(notifications, "status") == [STATUS_ALREADY_CONNECTED]
        assert all(n.client_id == "c2" for n in notifications)
        assert registry.lookup("u1").client_id == "c1"
        assert len(factory.clients) == 1

    @pytest.mark.asyncio
    async def test_connection_failure_is_reported(self, relay, bus, registry, factory, payloads):
        factory.connect_error = RuntimeError("bridge unreachable")

        await relay.authenticate("c1", {"userId": "u1"})

        errors = payloads(bus.drain(), "error")
        assert len(errors) == 1
        assert "bridge unreachable" in errors[0]
        assert "u1" not in registry


class TestSendMessage:
    """Tests for the sendMessage event."""

    @pytest.mark.asyncio
    async def test_send_before_auth(self, relay, bus, factory, payloads):
        await relay.send_message("c1", {"groupId": "1@g.us", "message": "hello"})

        assert payloads(bus.drain(), "error") == ["You are not connected"]
        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_send_after_auth(self, relay, bus, factory, eventually, payloads):
        await _authenticated(relay, factory, bus, eventually)

        await relay.send_message("c1", {"groupId": "1@g.us", "message": "hello"})

        assert factory.last.sent == [("1@g.us", "hello")]
        assert payloads(bus.drain(), "messageStatus") == [{"status": "sent"}]

    @pytest.mark.asyncio
    async def test_send_failure(self, relay, bus, factory, eventually, payloads):
        await _authenticated(relay, factory, bus, eventually)
        factory.last.send_error = RuntimeError("not a participant")

        await relay.send_message("c1", {"groupId": "1@g.us", "message": "hello"})

        notifications = bus.drain()
        assert payloads(notifications, "messageStatus") == []
        assert payloads(notifications, "error") == ["Failed to send message to 1@g.us"]

    @pytest.mark.asyncio
    async def test_send_requires_target(self, relay, bus, factory, eventually, payloads):
        await _authenticated(relay, factory, bus, eventually)

        await relay.send_message("c1", {"message": "hello"})

        assert len(payloads(bus.drain(), "error")) == 1
        assert factory.last.sent == []


class TestListGroups:
    """Tests for the listGroups event."""

    @pytest.mark.asyncio
    async def test_list_groups_before_auth(self, relay, bus, payloads):
        await relay.list_groups("c1")

        assert payloads(bus.drain(), "error") == ["Store not available"]

    @pytest.mark.asyncio
    async def test_list_groups_after_sync(self, relay, bus, factory, eventually, payloads):
        factory.groups = [{"id": "1@g.us"}, {"id": "2@g.us"}, {"id": "999@s.whatsapp.net"}]
        await _authenticated(relay, factory, bus, eventually)

        await relay.list_groups("c1")

        groups = payloads(bus.drain(), "groups")[0]
        assert [g["id"] for g in groups] == ["1@g.us", "2@g.us"]
        assert groups[0] == {
            "id": "1@g.us",
            "name": "",
            "participants": [],
            "conversationTimestamp": None,
            "unreadCount": 0,
            "messages": [],
        }


class TestDisconnect:
    """Tests for frontend disconnects."""

    @pytest.mark.asyncio
    async def test_disconnect_tears_down_session(self, relay, registry, stores, factory, bus, eventually):
        await _authenticated(relay, factory, bus, eventually)

        await relay.on_disconnect("c1")

        assert "u1" not in registry
        assert "u1" not in stores
        assert factory.last.closed

    @pytest.mark.asyncio
    async def test_disconnect_without_session(self, relay, registry):
        await relay.on_disconnect("c9", "client disconnect")

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_old_client_disconnect_keeps_new_session(self, relay, registry, factory, bus, eventually):
        await _authenticated(relay, factory, bus, eventually, sid="c1")
        await relay.on_disconnect("c1")
        await _authenticated(relay, factory, bus, eventually, sid="c2")

        await relay.on_disconnect("c1")

        assert registry.lookup("u1").client_id == "c2"
        assert not factory.last.closed


class TestEndToEnd:
    """Full flow through the notification bus to Socket.IO emits."""

    @pytest.mark.asyncio
    async def test_auth_open_list_groups(self, relay, sio, bus, factory, eventually):
        factory.groups = [{"id": "1@g.us"}, {"id": "2@g.us"}]
        dispatcher = asyncio.create_task(bus.dispatch())
        try:
            await relay.authenticate("c1", {"userId": "u1"})
            factory.last.emit(ConnectionUpdate(connection="open"))
            await eventually(lambda: sio.emit.await_count == 1)
            sio.emit.assert_awaited_with("status", STATUS_CONNECTED, to="c1")

            await relay.list_groups("c1")
            await eventually(lambda: sio.emit.await_count == 2)
        finally:
            bus.stop()
            await dispatcher

        event, groups = sio.emit.await_args.args
        assert event == "groups"
        assert [g["id"] for g in groups] == ["1@g.us", "2@g.us"]
        assert sio.emit.await_args.kwargs == {"to": "c1"}
