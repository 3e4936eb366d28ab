"""
协议模块 - WhatsApp 协议客户端的统一接口与桥接实现。

- ProtocolClient：抽象接口，编排器只依赖它
- BridgeClient：经 WebSocket 连接 Node.js 桥接服务的实现
- VersionResolver / fetch_latest_version：WhatsApp Web 版本号解析
"""

from warelay.protocol.base import EventListener, ProtocolClient
from warelay.protocol.bridge import BridgeClient
from warelay.protocol.version import VersionResolver, fetch_latest_version

__all__ = ["ProtocolClient", "EventListener", "BridgeClient", "VersionResolver", "fetch_latest_version"]
