"""
会话句柄实现模块 - 单个用户的协议会话。

本模块包含两个核心类：
- SessionState：会话状态（CONNECTING / OPEN / RECONNECTING / TERMINATED）
- SessionHandle：持有某个用户当前唯一的协议客户端，以及该用户的事件队列

【事件处理模型 - 每用户一个 actor】
协议客户端产生的事件通过同步监听器放入会话自己的 asyncio.Queue，
由会话唯一的 pump 任务按顺序取出并交给编排器处理：

  协议客户端 → _enqueue() → 事件队列 → pump 任务 → 编排器.handle_event()

因此同一用户的事件严格按协议客户端产生的顺序处理，
对该用户缓存和注册表条目的所有写入都发生在这一个任务里。
不同用户的 pump 任务在同一个事件循环上交错运行，互不影响。

【重连时的原地替换】
重连时 SessionHandle 本身不变（逻辑上仍是同一个会话），
只是 attach() 换上新的协议客户端实例，旧实例的监听器同时解绑。

【销毁】
detach() 是同步的：先标记 TERMINATED、解绑监听器、取消 pump，
之后才去 await 关闭底层连接。这保证"迟到的 close 事件"不会再触发重连。
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable

from loguru import logger

from warelay.bus.events import ProtocolEvent
from warelay.protocol.base import ProtocolClient


class SessionState(str, Enum):
    """会话生命周期状态。TERMINATED 为终止状态，不可再迁出。"""
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


EventHandler = Callable[["SessionHandle", ProtocolEvent], Awaitable[None]]


class SessionHandle:
    """
    单个用户的协议会话。

    属性:
        user_id: 所属用户
        client_id: 拥有该会话的前端客户端（Socket.IO sid）
        state: 当前生命周期状态
        client: 当前协议客户端实例（重连时原地替换）
        reconnect_attempts: 连续重连次数（连接打开后清零）
        created_at: 创建时间
    """

    def __init__(self, user_id: str, client_id: str):
        self.user_id = user_id
        self.client_id = client_id
        self.state = SessionState.CONNECTING
        self.client: ProtocolClient | None = None
        self.reconnect_attempts = 0
        self.created_at = datetime.now()
        self._queue: asyncio.Queue[ProtocolEvent] = asyncio.Queue()
        self._pump: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"SessionHandle(user_id={self.user_id!r}, client_id={self.client_id!r}, state={self.state.value})"

    @property
    def terminated(self) -> bool:
        return self.state == SessionState.TERMINATED

    @property
    def pending_events(self) -> int:
        return self._queue.qsize()

    def attach(self, client: ProtocolClient) -> ProtocolClient | None:
        """
        挂上新的协议客户端并绑定事件监听器。

        返回:
            被替换下来的旧客户端（已解绑监听器，由调用方负责关闭），没有则为 None
        """
        previous = self.client
        if previous is not None and previous is not client:
            previous.remove_all_listeners()
        self.client = client
        client.on_event(self._enqueue)
        return previous if previous is not client else None

    def _enqueue(self, event: ProtocolEvent) -> None:
        if self.terminated:
            return
        self._queue.put_nowait(event)

    def start_pump(self, handler: EventHandler) -> None:
        """启动事件处理任务（只会启动一次）。"""
        if self._pump is None and not self.terminated:
            self._pump = asyncio.create_task(self._run(handler))

    async def _run(self, handler: EventHandler) -> None:
        while not self.terminated:
            event = await self._queue.get()
            if self.terminated:
                break
            try:
                await handler(self, event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # 单个事件处理失败只影响这一个事件，会话继续运行
                logger.exception(f"Error handling {type(event).__name__} for {self.user_id}: {e}")

    def detach(self) -> ProtocolClient | None:
        """
        同步销毁：标记终止、解绑监听器、取消 pump 任务、丢弃未处理事件。

        在 pump 任务内部调用时不会取消自身（当前事件的处理会继续完成）。

        返回:
            需要关闭的协议客户端，没有则为 None
        """
        self.state = SessionState.TERMINATED
        client = self.client
        if client is not None:
            client.remove_all_listeners()
        if self._pump is not None and self._pump is not asyncio.current_task():
            self._pump.cancel()
        self._pump = None
        if self.pending_events:
            logger.debug(f"Dropping {self.pending_events} pending events for {self.user_id}")
        while not self._queue.empty():
            self._queue.get_nowait()
        return client

    async def close(self) -> None:
        """detach() 之后关闭底层协议连接。重复调用是安全的。"""
        client = self.detach()
        self.client = None
        if client is None:
            return
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing protocol client for {self.user_id}: {e}")
