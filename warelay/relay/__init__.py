"""
中继模块 - 会话编排、Socket.IO 事件处理与应用组装。
"""

from warelay.relay.app import RelayApp
from warelay.relay.orchestrator import ConnectionOrchestrator
from warelay.relay.server import EventRelay

__all__ = ["RelayApp", "ConnectionOrchestrator", "EventRelay"]
