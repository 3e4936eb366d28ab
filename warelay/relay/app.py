"""
应用组装模块 - 按配置创建所有组件并运行 Socket.IO 服务。

组装关系：

  Config
    ├── SessionRegistry            会话注册表（进程唯一）
    ├── UserStoreManager           用户缓存（<data>/stores）
    ├── FileCredentialStore        凭证（<data>/auth）
    ├── VersionResolver            WhatsApp Web 版本号（httpx）
    ├── NotificationBus            出站通知总线
    ├── ConnectionOrchestrator     会话生命周期
    └── socketio.AsyncServer
          └── EventRelay           入站事件处理 + 出站通知发送

运行时由 uvicorn 承载 socketio.ASGIApp，通知总线的分发任务与之并行运行。
"""

import asyncio

import socketio
import uvicorn
from loguru import logger

from warelay.bus.queue import NotificationBus
from warelay.config.schema import Config
from warelay.credentials.store import CredentialStore, FileCredentialStore
from warelay.protocol.bridge import BridgeClient
from warelay.protocol.version import VersionResolver
from warelay.relay.orchestrator import ClientFactory, ConnectionOrchestrator
from warelay.relay.server import EventRelay
from warelay.session.registry import SessionRegistry
from warelay.store.manager import UserStoreManager


class RelayApp:
    """
    warelay 服务的组装根。

    参数:
        config: 全局配置
        client_factory: 协议客户端工厂，默认每个用户创建一个 BridgeClient
        credentials: 凭证存储，默认使用文件存储
    """

    def __init__(
        self,
        config: Config,
        client_factory: ClientFactory | None = None,
        credentials: CredentialStore | None = None,
    ):
        self.config = config
        self.bus = NotificationBus()
        self.registry = SessionRegistry()
        self.stores = UserStoreManager(config.stores_path, config.storage.flush_interval_s)
        self.credentials = credentials or FileCredentialStore(config.auth_path)
        self.version_resolver = VersionResolver(config.bridge.version_url, config.bridge.fallback_version)

        self.orchestrator = ConnectionOrchestrator(
            registry=self.registry,
            stores=self.stores,
            credentials=self.credentials,
            bus=self.bus,
            client_factory=client_factory or self._make_bridge_client,
            version_source=self.version_resolver,
            auth_timeout_s=config.relay.auth_timeout_s,
            reconnect=config.relay.reconnect,
        )

        self.sio = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=config.server.cors_origins,
            logger=False,
            engineio_logger=False,
        )
        self.relay = EventRelay(self.sio, self.registry, self.orchestrator, self.stores, self.bus)
        self.asgi = socketio.ASGIApp(self.sio)

        self._dispatch_task: asyncio.Task | None = None

    def _make_bridge_client(self, user_id: str) -> BridgeClient:
        return BridgeClient(user_id, self.config.bridge)

    async def start(self) -> None:
        """启动通知分发任务。"""
        if self._dispatch_task is None:
            self._dispatch_task = asyncio.create_task(self.bus.dispatch())

    async def stop(self) -> None:
        """关闭所有会话并停止通知分发。"""
        logger.info("Shutting down relay")
        await self.orchestrator.shutdown()
        self.bus.stop()
        if self._dispatch_task is not None:
            await self._dispatch_task
            self._dispatch_task = None

    async def run(self) -> None:
        """运行 Socket.IO 服务直到收到退出信号。"""
        server = uvicorn.Server(uvicorn.Config(
            self.asgi,
            host=self.config.server.host,
            port=self.config.server.port,
            log_level="warning",
        ))
        await self.start()
        logger.info(f"Relay listening on {self.config.server.host}:{self.config.server.port}")
        try:
            await server.serve()
        finally:
            await self.stop()
