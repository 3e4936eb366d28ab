"""
异步通知队列模块 - 核心与前端传输层之间的出站消息总线。

本模块实现了 NotificationBus 类。会话编排器和事件中继层产生的所有前端通知
（qr / status / message / groups / messageStatus / error）都先放入出站队列，
由后台分发任务按顺序交给订阅者（Socket.IO 发送回调）。

出站流程：
  编排器 / 中继层 → publish() → outbound 队列 → dispatch() → 订阅回调 → sio.emit

【Java 开发者类比】
- asyncio.Queue 类似于 Java 的 LinkedBlockingQueue
- subscribe + dispatch 模式类似于 Spring 的 @EventListener 机制
- dispatch 后台任务类似于 Java 的 ExecutorService 中的消费者线程

【核心设计】
编排器不依赖 Socket.IO：它只往总线上发布 ClientNotification，
因此可以在没有任何网络传输的情况下单独测试。
"""

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger

from warelay.bus.events import ClientNotification

NotificationCallback = Callable[[ClientNotification], Awaitable[None]]


class NotificationBus:
    """
    出站通知总线。

    属性:
        outbound: 出站通知异步队列（核心 → 前端）
        _subscribers: 订阅回调列表，每条通知依次交给所有回调
        _running: 分发器运行状态标志
    """

    def __init__(self):
        self.outbound: asyncio.Queue[ClientNotification] = asyncio.Queue()
        self._subscribers: list[NotificationCallback] = []
        self._running = False

    async def publish(self, notification: ClientNotification) -> None:
        """发布一条出站通知。"""
        await self.outbound.put(notification)

    async def notify(self, client_id: str, event: str, payload: Any = None) -> None:
        """publish 的便捷写法：直接用客户端 ID、事件名和数据构造通知。"""
        await self.publish(ClientNotification(client_id=client_id, event=event, payload=payload))

    def subscribe(self, callback: NotificationCallback) -> None:
        """
        注册出站通知回调。

        参数:
            callback: 异步回调函数，接收 ClientNotification 参数
        """
        self._subscribers.append(callback)

    async def dispatch(self) -> None:
        """
        出站通知分发器（后台常驻任务）。

        持续从 outbound 队列取出通知并调用所有订阅回调。
        使用 wait_for 超时机制（1秒）避免在 stop() 时长时间阻塞。
        单个回调的异常只记录日志，不会中断分发循环。
        """
        self._running = True
        while self._running:
            try:
                notification = await asyncio.wait_for(self.outbound.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            for callback in self._subscribers:
                try:
                    await callback(notification)
                except Exception as e:
                    logger.error(f"Error dispatching {notification.event} to {notification.client_id}: {e}")

    def stop(self) -> None:
        """停止分发器，dispatch 循环会在下次超时检查时退出。"""
        self._running = False

    def drain(self) -> list[ClientNotification]:
        """取出当前队列中所有尚未分发的通知（不等待）。"""
        items: list[ClientNotification] = []
        while not self.outbound.empty():
            items.append(self.outbound.get_nowait())
        return items

    @property
    def outbound_size(self) -> int:
        """待分发的通知数量。"""
        return self.outbound.qsize()
