"""
会话注册表 - 用户 ID 到（前端客户端，会话）的映射。

【不变式】
- 一个 user_id 最多对应一个注册条目（一个用户同一时刻只有一个活跃会话）
- 一个 client_id 最多拥有一个注册条目（一个前端连接只认证一个用户）

【原子性】
所有方法都是同步的、没有 await，在 asyncio 协作式调度下，
"检查是否存在 + 插入"不会被其他用户的事件处理打断。
因此同一用户的多个并发 auth 请求里只有一个能注册成功。
若将来移植到多线程运行时，需要在这里加每用户锁。

【Java 开发者类比】
- SessionRegistry 类似于两个互相索引的 HashMap（userId → entry，clientId → userId）
"""

from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from warelay.errors import AlreadyConnectedError
from warelay.session.handle import SessionHandle


@dataclass
class RegistryEntry:
    """注册条目：用户、拥有它的前端客户端、会话句柄。"""
    user_id: str
    client_id: str
    session: SessionHandle
    registered_at: datetime = field(default_factory=datetime.now)


class SessionRegistry:
    """进程级的会话注册表，由应用组装点创建并注入给编排器和中继层。"""

    def __init__(self):
        self._by_user: dict[str, RegistryEntry] = {}
        self._by_client: dict[str, str] = {}

    def register(self, user_id: str, client_id: str, session: SessionHandle) -> RegistryEntry:
        """
        登记新会话。

        异常:
            AlreadyConnectedError: 该用户已有条目，或该客户端已拥有另一个用户的条目
        """
        if user_id in self._by_user:
            raise AlreadyConnectedError(user_id)
        owned = self._by_client.get(client_id)
        if owned is not None:
            raise AlreadyConnectedError(user_id, client_id=client_id)

        entry = RegistryEntry(user_id=user_id, client_id=client_id, session=session)
        self._by_user[user_id] = entry
        self._by_client[client_id] = user_id
        logger.debug(f"Registered {user_id} for client {client_id}")
        return entry

    def lookup(self, user_id: str) -> RegistryEntry | None:
        return self._by_user.get(user_id)

    def unregister(self, user_id: str) -> RegistryEntry | None:
        """移除用户条目（幂等）。返回被移除的条目，不存在时返回 None。"""
        entry = self._by_user.pop(user_id, None)
        if entry is None:
            return None
        if self._by_client.get(entry.client_id) == user_id:
            del self._by_client[entry.client_id]
        logger.debug(f"Unregistered {user_id} (client {entry.client_id})")
        return entry

    def unregister_if_owner(self, user_id: str, client_id: str) -> bool:
        """
        仅当条目仍归 client_id 所有时才移除。

        用于防止"旧客户端迟到的断开信号"误删新客户端为同一用户建立的条目。
        """
        entry = self._by_user.get(user_id)
        if entry is None or entry.client_id != client_id:
            return False
        self.unregister(user_id)
        return True

    def owner_of(self, client_id: str) -> str | None:
        """查询客户端当前拥有的用户 ID。"""
        return self._by_client.get(client_id)

    def session_for_client(self, client_id: str) -> SessionHandle | None:
        """查询客户端当前拥有的会话。"""
        user_id = self._by_client.get(client_id)
        if user_id is None:
            return None
        entry = self._by_user.get(user_id)
        return entry.session if entry else None

    def user_ids(self) -> list[str]:
        return list(self._by_user)

    def entries(self) -> list[RegistryEntry]:
        return list(self._by_user.values())

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._by_user

    def __len__(self) -> int:
        return len(self._by_user)
