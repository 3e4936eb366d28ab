"""
WhatsApp 桥接客户端 - 基于 Node.js 桥接服务的协议连接。

本模块实现了 ProtocolClient 的生产环境版本：
- 每个用户会话建立一条到桥接服务的 WebSocket 连接
- 桥接服务使用 @whiskeysockets/baileys 处理 WhatsApp Web 协议
- Python 端只负责 JSON 帧的收发与事件转换

架构特点：
- 桥接模式：Python <-> WebSocket <-> Node.js Bridge <-> WhatsApp Web
- 请求/响应通过 id 关联，每个请求都有超时
- 支持认证令牌（bridge token）进行桥接服务鉴权
- WebSocket 意外断开时上报 CONNECTION_LOST，交给编排器决定是否重连

帧协议（Python <-> Bridge）：
- 发出 auth：{"type": "auth", "token": ...}
- 发出 connect：{"type": "connect", "userId", "creds", "version", "qrTimeoutMs"}
- 发出 request：{"type": "request", "id", "method", "params"}
- 收到 connection.update：{"connection", "qr", "statusCode", "error"}
- 收到 creds.update：{"creds": {...}}
- 收到 messages.upsert：{"payload": {...}}
- 收到 response：{"id", "result"} 或 {"id", "error"}
- 收到 error：桥接服务报告的错误

依赖：
- websockets：Python WebSocket 客户端库
"""

import asyncio
import itertools
import json
from typing import Any

import websockets
from loguru import logger

from warelay.bus.events import ConnectionUpdate, CredsUpdate, DisconnectReason, MessagesUpsert
from warelay.config.schema import BridgeConfig
from warelay.errors import BridgeError
from warelay.protocol.base import ProtocolClient
from warelay.utils.helpers import truncate_string


class BridgeClient(ProtocolClient):
    """
    桥接协议客户端 - 一个实例对应一条到桥接服务的 WebSocket 连接。

    属性:
        config: 桥接服务配置
        _ws: WebSocket 连接对象
        _reader: 读取循环任务
        _pending: 等待响应的请求 {request_id: Future}
        _closing: 是否为主动关闭（主动关闭不上报 close 事件）
        _close_reported: 是否已经上报过 close 事件（只上报一次）
    """

    name = "bridge"

    def __init__(self, user_id: str, config: BridgeConfig):
        super().__init__(user_id)
        self.config = config
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._closing = False
        self._close_reported = False

    async def connect(self, creds: dict[str, Any], version: list[int] | None = None) -> None:
        """
        连接桥接服务并请求为该用户建立 WhatsApp 会话。

        流程：
        1. 建立 WebSocket 连接
        2. 发送认证令牌（如果配置了）
        3. 发送 connect 帧（携带凭证和版本号）
        4. 启动读取循环
        """
        logger.debug(f"Connecting {self.user_id} to WhatsApp bridge at {self.config.url}")
        try:
            self._ws = await websockets.connect(self.config.url, max_size=None)
        except (OSError, websockets.WebSocketException) as e:
            raise BridgeError(f"Cannot reach WhatsApp bridge at {self.config.url}: {e}") from e

        if self.config.token:
            await self._send({"type": "auth", "token": self.config.token})
        await self._send({
            "type": "connect",
            "userId": self.user_id,
            "creds": creds,
            "version": version,
            "qrTimeoutMs": self.config.qr_timeout_ms,
        })
        self._reader = asyncio.create_task(self._read_loop())

    async def fetch_groups(self) -> list[dict[str, Any]]:
        result = await self._request("groupFetchAllParticipating")
        # Baileys 返回 {jid: metadata} 形式的对象
        if isinstance(result, dict):
            return [g for g in result.values() if isinstance(g, dict)]
        if isinstance(result, list):
            return [g for g in result if isinstance(g, dict)]
        return []

    async def send_text(self, to: str, text: str) -> Any:
        return await self._request("sendMessage", {"to": to, "content": {"text": text}})

    async def close(self) -> None:
        """主动关闭：取消读取循环、让所有未完成请求失败、关闭 WebSocket。"""
        self._closing = True
        if self._reader:
            self._reader.cancel()
            self._reader = None
        self._fail_pending(BridgeError("bridge client closed"))
        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing bridge socket for {self.user_id}: {e}")
            self._ws = None

    # ---- 帧收发 ---------------------------------------------------------

    async def _send(self, payload: dict[str, Any]) -> None:
        if not self._ws:
            raise BridgeError("bridge not connected")
        await self._ws.send(json.dumps(payload))

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """发送请求帧并等待对应 id 的响应帧。"""
        if not self._ws or self._closing:
            raise BridgeError("bridge not connected")

        request_id = str(next(self._ids))
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send({"type": "request", "id": request_id, "method": method, "params": params or {}})
            return await asyncio.wait_for(future, timeout=self.config.request_timeout_s)
        except asyncio.TimeoutError as e:
            raise BridgeError(f"{method} timed out after {self.config.request_timeout_s:g}s") from e
        finally:
            self._pending.pop(request_id, None)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _read_loop(self) -> None:
        """持续读取桥接帧。连接意外断开时上报 CONNECTION_LOST。"""
        error = ""
        try:
            async for raw in self._ws:
                try:
                    self._handle_frame(raw)
                except Exception as e:
                    logger.error(f"Error handling bridge frame for {self.user_id}: {e}")
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as e:
            error = str(e)
        except Exception as e:
            error = str(e)
            logger.warning(f"WhatsApp bridge connection error for {self.user_id}: {e}")

        self._fail_pending(BridgeError("bridge connection lost"))
        if not self._closing:
            self._report_close(DisconnectReason.CONNECTION_LOST, error or "bridge connection lost")

    def _report_close(self, status_code: int | None, error: str | None) -> None:
        if self._close_reported:
            return
        self._close_reported = True
        self._emit(ConnectionUpdate(connection="close", status_code=status_code, error=error))

    def _handle_frame(self, raw: str | bytes) -> None:
        """
        处理桥接服务发来的一帧。

        根据 type 字段分发：
        - connection.update → ConnectionUpdate
        - creds.update → CredsUpdate
        - messages.upsert → MessagesUpsert
        - response → 唤醒对应请求
        - error → 记录日志
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from bridge: {truncate_string(str(raw))}")
            return

        frame_type = data.get("type")

        if frame_type == "connection.update":
            update = ConnectionUpdate(
                connection=data.get("connection"),
                qr=data.get("qr"),
                status_code=data.get("statusCode"),
                error=data.get("error"),
            )
            if update.is_close:
                # 桥接服务自己上报的 close 优先，后续 WebSocket 断开不再重复上报
                self._report_close(update.status_code, update.error)
            else:
                self._emit(update)

        elif frame_type == "creds.update":
            self._emit(CredsUpdate(creds=data.get("creds") or {}))

        elif frame_type == "messages.upsert":
            self._emit(MessagesUpsert(payload=data.get("payload")))

        elif frame_type == "response":
            future = self._pending.get(str(data.get("id")))
            if future is None or future.done():
                return
            if data.get("error"):
                future.set_exception(BridgeError(str(data["error"])))
            else:
                future.set_result(data.get("result"))

        elif frame_type == "error":
            logger.error(f"WhatsApp bridge error for {self.user_id}: {data.get('error')}")

        else:
            logger.debug(f"Ignoring bridge frame type {frame_type!r}")
