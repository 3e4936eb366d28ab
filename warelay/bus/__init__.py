"""
事件总线模块 - 协议事件与前端通知的数据结构，以及出站通知队列。

消息流向：
  协议客户端 → 协议事件 → 会话事件队列 → 编排器
  编排器 / 中继层 → ClientNotification → NotificationBus → Socket.IO 客户端
"""

from warelay.bus.events import (
    ClientNotification,
    ConnectionUpdate,
    CredsUpdate,
    DisconnectReason,
    MessagesUpsert,
    ProtocolEvent,
)
from warelay.bus.queue import NotificationBus

__all__ = [
    "NotificationBus",
    "ClientNotification",
    "ConnectionUpdate",
    "CredsUpdate",
    "MessagesUpsert",
    "ProtocolEvent",
    "DisconnectReason",
]
