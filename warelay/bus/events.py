"""
事件类型定义模块 - 定义在协议客户端、会话编排器与前端之间流转的数据结构。

本模块定义了两类事件：
- 协议事件（入站，协议客户端 → 会话）：
  ConnectionUpdate、CredsUpdate、MessagesUpsert
- 前端通知（出站，核心 → 前端客户端）：ClientNotification

所有协议客户端实现（桥接客户端、测试用假客户端）都只产出这三种协议事件，
编排器只消费这三种事件，二者通过这些数据类解耦。

【Java 开发者类比】
- 使用 Python 的 @dataclass 装饰器，等价于 Java 的 record 类或 Lombok 的 @Data
- DisconnectReason 继承 IntEnum，等价于带 int 值的 Java enum
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Union


class DisconnectReason(IntEnum):
    """
    协议连接断开原因码（与 Baileys 的 DisconnectReason 保持一致）。

    只有 LOGGED_OUT 是终止性的：账号已在手机端解除绑定，凭证作废。
    其余原因都可以用同一份凭证重新连接。
    """
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408  # 与 CONNECTION_LOST 同值，IntEnum 会把它作为别名
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


# 前端 status 事件的取值
STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"
STATUS_ALREADY_CONNECTED = "already_connected"


@dataclass
class ConnectionUpdate:
    """
    协议连接状态更新。

    属性:
        connection: "connecting" | "open" | "close"，仅携带二维码时为 None
        qr: 配对二维码字符串（需要扫码配对时出现）
        status_code: 连接关闭时的原因码（见 DisconnectReason）
        error: 连接关闭时的错误描述
    """
    connection: str | None = None
    qr: str | None = None
    status_code: int | None = None
    error: str | None = None

    @property
    def is_open(self) -> bool:
        return self.connection == "open"

    @property
    def is_close(self) -> bool:
        return self.connection == "close"


@dataclass
class CredsUpdate:
    """凭证刷新事件。creds 为需要持久化的完整凭证字典（按顶层键分文件存储）。"""
    creds: dict[str, Any] = field(default_factory=dict)


@dataclass
class MessagesUpsert:
    """新消息事件。payload 原样转发给前端。"""
    payload: Any = None


ProtocolEvent = Union[ConnectionUpdate, CredsUpdate, MessagesUpsert]


@dataclass
class ClientNotification:
    """
    出站通知 - 核心要发给某个前端客户端的 Socket.IO 事件。

    属性:
        client_id: 目标客户端（Socket.IO sid）
        event: 事件名（qr / status / message / groups / messageStatus / error）
        payload: 事件数据
        timestamp: 产生时间
    """
    client_id: str
    event: str
    payload: Any = None
    timestamp: datetime = field(default_factory=datetime.now)
