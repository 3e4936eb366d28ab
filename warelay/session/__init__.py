"""
会话模块 - 每个用户的协议会话句柄与进程级会话注册表。

【架构定位】
- SessionHandle：持有用户唯一的协议客户端，并以 actor 方式串行处理该用户的协议事件
- SessionRegistry：user_id → (client_id, SessionHandle)，保证一用户一会话、一客户端一用户
"""

from warelay.session.handle import SessionHandle, SessionState
from warelay.session.registry import RegistryEntry, SessionRegistry

__all__ = ["SessionHandle", "SessionState", "SessionRegistry", "RegistryEntry"]
