"""
协议客户端基类模块 - 定义 WhatsApp 协议客户端的统一接口。

本模块提供了 ProtocolClient 抽象基类。会话编排器只通过这个接口
与协议层交互，具体实现可以是：
- BridgeClient：经 WebSocket 连接 Node.js 桥接服务（生产环境）
- 测试中的假客户端：直接在内存里产出协议事件

【核心抽象方法】
- connect(): 用给定凭证建立连接（握手在后台继续，结果通过事件通知）
- fetch_groups(): 拉取当前账号参与的全部群组
- send_text(): 发送文本消息
- close(): 释放底层连接

【事件监听】
每个客户端实例只有一个监听器（通常是所属会话的入队函数）。
监听器是同步函数：事件按产生顺序直接进入会话的事件队列。
remove_all_listeners() 之后客户端产生的任何事件都会被丢弃，
这是销毁会话时防止"迟到的 close 事件触发重连"的关键。

【Java 开发者类比】
- ProtocolClient 相当于 Java 的 abstract class + interface
- on_event / remove_all_listeners 相当于 addListener / removeAllListeners
"""

from abc import ABC, abstractmethod
from typing import Any, Callable

from loguru import logger

from warelay.bus.events import ProtocolEvent

EventListener = Callable[[ProtocolEvent], None]


class ProtocolClient(ABC):
    """
    协议客户端抽象基类 - 一个实例对应某个用户的一次协议连接。

    属性:
        name: 实现标识名（用于日志）
        user_id: 所属用户
        _listener: 当前事件监听器，None 表示已解绑
    """

    name: str = "base"

    def __init__(self, user_id: str):
        self.user_id = user_id
        self._listener: EventListener | None = None

    def on_event(self, listener: EventListener) -> None:
        """绑定事件监听器（覆盖之前的监听器）。"""
        self._listener = listener

    def remove_all_listeners(self) -> None:
        """解绑监听器。之后产生的事件全部丢弃。"""
        self._listener = None

    @property
    def has_listener(self) -> bool:
        return self._listener is not None

    def _emit(self, event: ProtocolEvent) -> None:
        """把事件交给监听器；没有监听器时静默丢弃。"""
        if self._listener is None:
            logger.debug(f"Dropping {type(event).__name__} for {self.user_id}: no listener attached")
            return
        self._listener(event)

    @abstractmethod
    async def connect(self, creds: dict[str, Any], version: list[int] | None = None) -> None:
        """
        用给定凭证发起连接。

        返回时只代表连接请求已发出；连接打开、需要扫码、关闭等
        结果都通过 ConnectionUpdate 事件通知。

        参数:
            creds: 凭证存储中加载的认证材料（新用户为空字典）
            version: WhatsApp Web 版本号，如 [2, 3000, 1015901307]
        """
        pass

    @abstractmethod
    async def fetch_groups(self) -> list[dict[str, Any]]:
        """拉取当前账号参与的全部群组元数据（id、subject、participants、creation）。"""
        pass

    @abstractmethod
    async def send_text(self, to: str, text: str) -> Any:
        """向聊天（用户或群组 JID）发送文本消息。"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """释放底层连接。主动关闭不会产生 close 事件。"""
        pass
