"""
连接编排器模块 - 每个用户协议会话的生命周期管理。

ConnectionOrchestrator 负责：
1. start()：为用户创建会话并登记到注册表，加载凭证、解析版本号、建立协议连接
2. handle_event()：在会话的 pump 任务里处理协议事件（qr / 连接打开 / 连接关闭 / 凭证更新 / 新消息）
3. teardown()：前端客户端断开时销毁其拥有的会话（带"旧客户端迟到断开"保护）
4. shutdown()：进程退出时关闭所有会话、等待凭证写入、落盘所有缓存

【连接关闭的三种结局】
- 会话已销毁，或注册表条目已不再指向这个会话 → 忽略（不再重连）
- 断开原因码为 LOGGED_OUT(401) → 删除凭证、移除条目、通知 disconnected
- 其他原因码 → 按重连策略原地替换协议客户端，注册表条目保持不变

【依赖注入】
编排器不直接依赖 Socket.IO 或桥接服务：协议客户端由 client_factory 创建，
前端通知发布到 NotificationBus，因此可以用假的协议客户端单独测试。
"""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from warelay.bus.events import (
    STATUS_CONNECTED,
    STATUS_DISCONNECTED,
    ConnectionUpdate,
    CredsUpdate,
    MessagesUpsert,
    ProtocolEvent,
)
from warelay.bus.queue import NotificationBus
from warelay.config.schema import ReconnectConfig
from warelay.credentials.store import CredentialStore
from warelay.errors import AuthTimeoutError, ConnectionFailureError, ProtocolDisconnect
from warelay.protocol.base import ProtocolClient
from warelay.session.handle import SessionHandle, SessionState
from warelay.session.registry import SessionRegistry
from warelay.store.chats import ChatRecord
from warelay.store.manager import UserStoreManager

ClientFactory = Callable[[str], ProtocolClient]
VersionSource = Callable[[], Awaitable[list[int]]]

DEFAULT_AUTH_TIMEOUT_S = 90.0


class ConnectionOrchestrator:
    """
    协议会话编排器。

    属性:
        registry: 会话注册表
        stores: 用户缓存管理器
        credentials: 凭证存储
        bus: 出站通知总线
        client_factory: 按 user_id 创建协议客户端
        version_source: 返回 WhatsApp Web 版本号的异步函数（可选）
        auth_timeout_s: 建立连接的超时时间
        reconnect: 重连策略
    """

    def __init__(
        self,
        registry: SessionRegistry,
        stores: UserStoreManager,
        credentials: CredentialStore,
        bus: NotificationBus,
        client_factory: ClientFactory,
        version_source: VersionSource | None = None,
        auth_timeout_s: float = DEFAULT_AUTH_TIMEOUT_S,
        reconnect: ReconnectConfig | None = None,
    ):
        self.registry = registry
        self.stores = stores
        self.credentials = credentials
        self.bus = bus
        self.client_factory = client_factory
        self.version_source = version_source
        self.auth_timeout_s = auth_timeout_s
        self.reconnect = reconnect or ReconnectConfig()

        # 凭证写入任务：同一用户的写入按产生顺序串行执行
        self._pending_writes: set[asyncio.Task] = set()
        self._last_write: dict[str, asyncio.Task] = {}

    # ========== 建立会话 ==========

    async def start(self, user_id: str, client_id: str) -> SessionHandle:
        """
        为 user_id 建立协议会话，归 client_id 所有。

        注册发生在第一个 await 之前，同一用户的并发请求只有一个能通过。

        异常:
            AlreadyConnectedError: 用户已有会话，或客户端已绑定其他用户
            AuthTimeoutError: 超过 auth_timeout_s 仍未建立连接
            ConnectionFailureError: 凭证加载或协议握手失败
        """
        handle = SessionHandle(user_id, client_id)
        self.registry.register(user_id, client_id, handle)
        handle.start_pump(self.handle_event)
        logger.info(f"Starting WhatsApp session for {user_id} (client {client_id})")

        try:
            await asyncio.wait_for(self._connect(handle), timeout=self.auth_timeout_s)
        except asyncio.TimeoutError:
            logger.error(f"Timed out connecting {user_id} to WhatsApp after {self.auth_timeout_s:g}s")
            await self._abort(handle)
            raise AuthTimeoutError(user_id, self.auth_timeout_s) from None
        except Exception as e:
            logger.error(f"Error connecting {user_id} to WhatsApp: {e}")
            await self._abort(handle)
            raise ConnectionFailureError(user_id, str(e)) from e

        return handle

    async def _connect(self, handle: SessionHandle) -> None:
        """加载凭证、解析版本号，挂上新的协议客户端并发起连接。首次连接和重连共用。"""
        creds = await self.credentials.load(handle.user_id)
        version = await self.version_source() if self.version_source else None
        if handle.terminated:
            return

        client = self.client_factory(handle.user_id)
        previous = handle.attach(client)
        if previous is not None:
            await self._close_client(handle.user_id, previous)

        await client.connect(creds, version)

    async def _abort(self, handle: SessionHandle) -> None:
        if self._owns(handle):
            self.registry.unregister(handle.user_id)
        await handle.close()

    def _owns(self, handle: SessionHandle) -> bool:
        """注册表条目是否仍指向这个会话。"""
        entry = self.registry.lookup(handle.user_id)
        return entry is not None and entry.session is handle

    @staticmethod
    async def _close_client(user_id: str, client: ProtocolClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing replaced protocol client for {user_id}: {e}")

    # ========== 协议事件 ==========

    async def handle_event(self, handle: SessionHandle, event: ProtocolEvent) -> None:
        """处理单个协议事件。总是在该会话的 pump 任务里被调用。"""
        if isinstance(event, ConnectionUpdate):
            if event.qr:
                logger.info(f"QR code received for {handle.user_id}")
                await self.bus.notify(handle.client_id, "qr", event.qr)
            if event.is_open:
                await self._on_open(handle)
            elif event.is_close:
                await self._on_close(handle, event)
        elif isinstance(event, CredsUpdate):
            self._persist_creds(handle.user_id, event.creds)
        elif isinstance(event, MessagesUpsert):
            await self.bus.notify(handle.client_id, "message", event.payload)

    async def _on_open(self, handle: SessionHandle) -> None:
        user_id = handle.user_id
        logger.info(f"WhatsApp connection open for {user_id}")
        handle.state = SessionState.OPEN
        handle.reconnect_attempts = 0

        store = await self.stores.acquire(user_id)
        client = handle.client
        groups: list[dict] = []
        if client is not None:
            try:
                groups = await client.fetch_groups()
            except Exception as e:
                logger.error(f"Error fetching groups for {user_id}: {e}")
        if handle.terminated:
            return

        inserted = 0
        for group in groups:
            try:
                chat = ChatRecord.from_group(group)
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed group for {user_id}: {e}")
                continue
            if store.chats.upsert(chat):
                inserted += 1
                logger.debug(f"Group added to store for {user_id}: {chat.id}")
        logger.info(f"Synced {len(groups)} groups for {user_id} ({inserted} new)")

        await self.bus.notify(handle.client_id, "status", STATUS_CONNECTED)

    async def _on_close(self, handle: SessionHandle, event: ConnectionUpdate) -> None:
        user_id = handle.user_id
        reason = ProtocolDisconnect(event.status_code)
        logger.info(f"WhatsApp connection closed for {user_id} (status={event.status_code})")

        if handle.terminated or not self._owns(handle):
            logger.info(f"Not reconnecting {user_id}: session is no longer active")
            await handle.close()
            return

        if reason.reconnectable:
            await self._reconnect(handle)
        else:
            await self._logout(handle)

    async def _logout(self, handle: SessionHandle) -> None:
        """凭证已失效：删除凭证、移除条目、通知前端 disconnected。"""
        user_id = handle.user_id
        logger.warning(f"{user_id} logged out of WhatsApp, removing credentials")
        client = handle.detach()
        handle.client = None

        await self._wait_for_writes(user_id)
        await self.credentials.delete(user_id)
        if self._owns(handle):
            self.registry.unregister(user_id)
        if client is not None:
            await self._close_client(user_id, client)
        await self.stores.release(user_id)

        await self.bus.notify(handle.client_id, "status", STATUS_DISCONNECTED)

    async def _reconnect(self, handle: SessionHandle) -> None:
        """按重连策略原地替换协议客户端。每次尝试前都会确认条目仍属于这个会话。"""
        user_id = handle.user_id
        handle.state = SessionState.RECONNECTING
        policy = self.reconnect

        while True:
            handle.reconnect_attempts += 1
            attempt = handle.reconnect_attempts
            if policy.exhausted(attempt):
                logger.error(f"Giving up reconnecting {user_id} after {attempt - 1} attempts")
                await self._terminate(handle)
                return

            delay = policy.delay_for(attempt)
            if delay > 0:
                logger.info(f"Reconnecting {user_id} in {delay:.1f}s (attempt {attempt})")
                await asyncio.sleep(delay)
            else:
                logger.info(f"Reconnecting {user_id} (attempt {attempt})")

            if handle.terminated or not self._owns(handle):
                logger.info(f"Reconnect of {user_id} cancelled: session was torn down")
                return

            try:
                await self._connect(handle)
                return
            except Exception as e:
                logger.error(f"Reconnect attempt {attempt} for {user_id} failed: {e}")
                await asyncio.sleep(policy.failure_delay_ms / 1000)

    async def _terminate(self, handle: SessionHandle) -> None:
        """放弃重连：销毁会话但保留凭证。"""
        user_id = handle.user_id
        if self._owns(handle):
            self.registry.unregister(user_id)
        await handle.close()
        await self.stores.release(user_id)
        await self.bus.notify(handle.client_id, "status", STATUS_DISCONNECTED)

    # ========== 凭证持久化 ==========

    def _persist_creds(self, user_id: str, creds: dict) -> None:
        previous = self._last_write.get(user_id)
        task = asyncio.create_task(self._save_creds(user_id, creds, previous))
        self._last_write[user_id] = task
        self._pending_writes.add(task)
        task.add_done_callback(lambda t: self._forget_write(user_id, t))

    async def _save_creds(self, user_id: str, creds: dict, previous: asyncio.Task | None) -> None:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        try:
            await self.credentials.save(user_id, creds)
            logger.debug(f"Credentials saved for {user_id} ({len(creds)} keys)")
        except Exception as e:
            logger.error(f"Error saving credentials for {user_id}: {e}")

    def _forget_write(self, user_id: str, task: asyncio.Task) -> None:
        self._pending_writes.discard(task)
        if self._last_write.get(user_id) is task:
            del self._last_write[user_id]

    async def _wait_for_writes(self, user_id: str) -> None:
        task = self._last_write.get(user_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ========== 销毁 ==========

    async def teardown(self, client_id: str, user_id: str | None = None) -> bool:
        """
        销毁 client_id 拥有的会话。

        只有当注册表条目仍归 client_id 所有时才会生效：
        旧客户端迟到的断开信号不会影响新客户端为同一用户建立的会话。

        返回:
            是否真的销毁了会话
        """
        user_id = user_id or self.registry.owner_of(client_id)
        if user_id is None:
            return False

        entry = self.registry.lookup(user_id)
        if entry is None or not self.registry.unregister_if_owner(user_id, client_id):
            logger.debug(f"Ignoring stale teardown of {user_id} from client {client_id}")
            return False

        logger.info(f"Closing WhatsApp session for {user_id}")
        await entry.session.close()
        await self.stores.release(user_id)
        logger.info(f"WhatsApp session for {user_id} closed")
        return True

    async def shutdown(self) -> None:
        """关闭所有会话，等待未完成的凭证写入，落盘所有缓存。"""
        entries = self.registry.entries()
        if entries:
            logger.info(f"Shutting down {len(entries)} WhatsApp sessions")
        for entry in entries:
            await self.teardown(entry.client_id, entry.user_id)

        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)
        await self.stores.close_all()
