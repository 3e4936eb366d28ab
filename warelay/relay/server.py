"""
事件中继模块 - 前端 Socket.IO 客户端与会话核心之间的边界。

入站事件（前端 → 服务）：
- auth {userId}：为该用户建立协议会话，归当前客户端所有
- sendMessage {groupId, message}：通过当前客户端拥有的会话发送文本消息
- listGroups：返回当前用户缓存中的群组
- disconnect：销毁当前客户端拥有的会话

出站事件（服务 → 前端，经 NotificationBus 分发）：
- qr / status / message / groups / messageStatus / error

所有业务异常都在这里被捕获并转换为发给该客户端的 error 事件，
单个客户端的错误不会影响其他客户端，更不会让进程崩溃。

依赖：
- python-socketio：Socket.IO 服务端（AsyncServer）
"""

from typing import Any

import socketio
from loguru import logger

from warelay.bus.events import STATUS_ALREADY_CONNECTED, ClientNotification
from warelay.bus.queue import NotificationBus
from warelay.errors import (
    AlreadyConnectedError,
    MissingUserIdError,
    NotConnectedError,
    RelayError,
    SendFailureError,
)
from warelay.relay.orchestrator import ConnectionOrchestrator
from warelay.session.registry import SessionRegistry
from warelay.store.manager import UserStoreManager


class EventRelay:
    """
    Socket.IO 事件处理器集合。

    构造时把处理器注册到 sio 上，并订阅通知总线把出站通知发给对应客户端。
    各处理方法也可以在测试中直接调用（sid 即 client_id）。
    """

    def __init__(
        self,
        sio: socketio.AsyncServer,
        registry: SessionRegistry,
        orchestrator: ConnectionOrchestrator,
        stores: UserStoreManager,
        bus: NotificationBus,
    ):
        self.sio = sio
        self.registry = registry
        self.orchestrator = orchestrator
        self.stores = stores
        self.bus = bus

        self._register_handlers()
        self.bus.subscribe(self.deliver)

    def _register_handlers(self) -> None:
        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on("auth", self.authenticate)
        self.sio.on("sendMessage", self.send_message)
        self.sio.on("listGroups", self.list_groups)

    async def deliver(self, notification: ClientNotification) -> None:
        """通知总线订阅回调：把通知发给目标客户端。"""
        await self.sio.emit(notification.event, notification.payload, to=notification.client_id)

    async def _error(self, sid: str, description: str) -> None:
        await self.bus.notify(sid, "error", description)

    # ========== 入站事件 ==========

    async def on_connect(self, sid: str, environ: dict, auth: Any = None) -> None:
        logger.info(f"Client connected: {sid}")

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        logger.info(f"Client disconnected: {sid}")
        try:
            await self.orchestrator.teardown(sid)
        except Exception as e:
            logger.exception(f"Error tearing down session of client {sid}: {e}")

    async def authenticate(self, sid: str, data: Any = None) -> None:
        raw = data.get("userId") if isinstance(data, dict) else None
        user_id = str(raw).strip() if raw is not None else ""
        if not user_id:
            await self._error(sid, str(MissingUserIdError()))
            return

        logger.info(f"Authentication requested for {user_id} by client {sid}")
        if user_id in self.registry:
            logger.info(f"{user_id} is already connected")
            await self.bus.notify(sid, "status", STATUS_ALREADY_CONNECTED)
            return

        try:
            await self.orchestrator.start(user_id, sid)
        except AlreadyConnectedError as e:
            logger.info(str(e))
            await self.bus.notify(sid, "status", STATUS_ALREADY_CONNECTED)
        except RelayError as e:
            await self._error(sid, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error authenticating {user_id}: {e}")
            await self._error(sid, "Failed to connect to WhatsApp")

    async def send_message(self, sid: str, data: Any = None) -> None:
        handle = self.registry.session_for_client(sid)
        if handle is None or handle.client is None or handle.terminated:
            await self._error(sid, str(NotConnectedError(sid)))
            return

        data = data if isinstance(data, dict) else {}
        group_id = data.get("groupId")
        message = data.get("message")
        if not group_id or message is None:
            await self._error(sid, "groupId and message are required")
            return

        try:
            await handle.client.send_text(str(group_id), str(message))
        except Exception as e:
            logger.error(f"Error sending message for {handle.user_id} to {group_id}: {e}")
            await self._error(sid, str(SendFailureError(str(group_id))))
            return

        await self.bus.notify(sid, "messageStatus", {"status": "sent"})

    async def list_groups(self, sid: str, data: Any = None) -> None:
        user_id = self.registry.owner_of(sid)
        store = self.stores.get(user_id) if user_id else None
        if store is None:
            await self._error(sid, "Store not available")
            return

        groups = [chat.to_dict() for chat in store.chats.list_groups()]
        logger.debug(f"Listing {len(groups)} groups for {user_id}")
        await self.bus.notify(sid, "groups", groups)
