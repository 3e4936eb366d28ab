"""
错误类型定义模块 - warelay 中继服务的异常体系。

所有业务异常都继承自 RelayError，在事件中继层（relay/server.py）统一捕获，
转换为发给对应前端客户端的 error 通知，绝不会让整个进程崩溃。

异常分类：
- MissingUserIdError：auth 请求未携带 userId
- AlreadyConnectedError：该用户已有活跃会话，或该客户端已绑定其他用户
- NotConnectedError：客户端尚未认证就发送了需要会话的指令
- ConnectionFailureError：建立协议连接失败（凭证加载、握手等）
- AuthTimeoutError：建立连接超过 auth_timeout_s 仍未完成
- ProtocolDisconnect：协议连接关闭，区分可重连与登出两类
- SendFailureError：消息发送失败
- BridgeError：桥接服务返回的错误或桥接连接不可用

【Java 开发者类比】
- RelayError 相当于自定义的 RuntimeException 基类
- 各子类相当于按业务含义细分的异常类型，调用方可按类型 catch
"""

from warelay.bus.events import DisconnectReason


class RelayError(Exception):
    """中继服务所有业务异常的基类。"""


class MissingUserIdError(RelayError):
    """auth 请求缺少 userId。"""

    def __init__(self) -> None:
        super().__init__("userId not provided")


class AlreadyConnectedError(RelayError):
    """用户已存在活跃会话，或者当前客户端已经绑定了另一个用户。"""

    def __init__(self, user_id: str, client_id: str | None = None):
        self.user_id = user_id
        self.client_id = client_id
        if client_id:
            message = f"Client {client_id} already owns a session (requested {user_id})"
        else:
            message = f"User {user_id} already has an active session"
        super().__init__(message)


class NotConnectedError(RelayError):
    """客户端没有活跃会话。"""

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__("You are not connected")


class ConnectionFailureError(RelayError):
    """建立协议连接失败（凭证加载失败、桥接握手失败等），不会自动重试。"""

    def __init__(self, user_id: str, reason: str = ""):
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Failed to connect to WhatsApp for {user_id}" + (f": {reason}" if reason else ""))


class AuthTimeoutError(ConnectionFailureError):
    """建立连接超时。"""

    def __init__(self, user_id: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(user_id, f"timed out after {timeout_s:g}s")


class ProtocolDisconnect(RelayError):
    """
    协议连接关闭事件对应的异常形式。

    属性:
        status_code: 断开原因码（取值见 DisconnectReason）
        is_logout: 是否为登出（终止性，需清除凭证）
        reconnectable: 是否应原地重连（登出以外的原因码都重连）
    """

    def __init__(self, status_code: int | None):
        self.status_code = status_code
        super().__init__(f"Protocol connection closed (status={status_code})")

    @property
    def is_logout(self) -> bool:
        return self.status_code == DisconnectReason.LOGGED_OUT

    @property
    def reconnectable(self) -> bool:
        return not self.is_logout


class SendFailureError(RelayError):
    """发送消息失败。"""

    def __init__(self, target_id: str, reason: str = ""):
        self.target_id = target_id
        super().__init__(f"Failed to send message to {target_id}" + (f": {reason}" if reason else ""))


class BridgeError(RelayError):
    """桥接服务报告的错误，或桥接连接不可用。"""
