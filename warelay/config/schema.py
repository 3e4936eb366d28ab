"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 warelay 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── server        - Socket.IO 服务监听地址、端口与 CORS 来源
├── bridge        - WhatsApp 桥接服务（Baileys）的连接参数
├── storage       - 数据目录与聊天缓存快照间隔
├── relay         - 认证超时与断线重连策略
└── logging       - 日志级别与日志文件

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class ServerConfig(BaseModel):
    """Socket.IO 服务配置。前端通过该端口建立实时连接。"""
    host: str = "0.0.0.0"  # 监听地址（0.0.0.0 表示监听所有网卡）
    port: int = 3030  # 监听端口
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])  # 允许的前端来源


class BridgeConfig(BaseModel):
    """
    WhatsApp 桥接服务配置。

    Python 端不直接实现 WhatsApp 协议，而是为每个用户会话建立一条到
    Node.js 桥接服务（@whiskeysockets/baileys）的 WebSocket 连接。
    """
    url: str = "ws://localhost:3001"  # 桥接服务的 WebSocket 地址
    token: str = ""  # 桥接认证令牌（可选但推荐设置）
    version_url: str = "https://raw.githubusercontent.com/WhiskeySockets/Baileys/master/src/Defaults/baileys-version.json"
    fallback_version: list[int] = Field(default_factory=lambda: [2, 3000, 1015901307])  # 拉取失败时使用的 WA Web 版本
    qr_timeout_ms: int = 60000  # 配对二维码超时（毫秒）
    request_timeout_s: float = 30.0  # 单次桥接请求（拉群组、发消息）的超时（秒）


class StorageConfig(BaseModel):
    """持久化配置。凭证目录和聊天快照都放在 data_dir 下。"""
    data_dir: str = "~/.warelay"  # 数据根目录
    flush_interval_s: float = 10.0  # 聊天缓存快照间隔（秒）

    @property
    def data_path(self) -> Path:
        """展开后的数据目录绝对路径。"""
        return Path(self.data_dir).expanduser()


class ReconnectConfig(BaseModel):
    """
    断线重连策略。

    默认值对应"立即重连、不限次数"：
    - max_attempts=0 表示不限次数
    - initial_delay_ms=0 表示关闭后立即重连
    连续失败时按 backoff_factor 指数退避，最长 max_delay_ms。
    """
    max_attempts: int = 0  # 最大连续重连次数（0 表示无限）
    initial_delay_ms: int = 0  # 首次重连前的等待（毫秒）
    backoff_factor: float = 2.0  # 指数退避倍数
    max_delay_ms: int = 30000  # 退避上限（毫秒）
    failure_delay_ms: int = 1000  # 重连尝试本身抛错后的最小等待（毫秒）

    def delay_for(self, attempt: int) -> float:
        """
        计算第 attempt 次重连（从 1 开始）之前应等待的秒数。

        参数:
            attempt: 当前是第几次连续重连

        返回:
            等待秒数
        """
        if self.initial_delay_ms <= 0:
            return 0.0
        delay_ms = self.initial_delay_ms * (self.backoff_factor ** max(0, attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000.0

    def exhausted(self, attempt: int) -> bool:
        """第 attempt 次重连是否超出上限。"""
        return self.max_attempts > 0 and attempt > self.max_attempts


class RelayConfig(BaseModel):
    """会话编排配置。"""
    auth_timeout_s: float = 90.0  # 建立协议连接的超时（秒），超过则报 AuthTimeoutError
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)


class LoggingConfig(BaseModel):
    """日志配置。file 为空时只输出到终端。"""
    level: str = "INFO"
    file: str = ""  # 例如 "~/.warelay/wa-logs.txt"
    rotation: str = "10 MB"  # loguru 文件轮转规则


class Config(BaseSettings):
    """
    warelay 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: WARELAY_
    - 嵌套分隔符: __ (双下划线)
    - 示例: WARELAY_SERVER__PORT=4000 可覆盖 server.port
    """
    server: ServerConfig = Field(default_factory=ServerConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def data_path(self) -> Path:
        """获取展开后的数据目录绝对路径（将 ~ 展开为用户主目录）。"""
        return self.storage.data_path

    @property
    def auth_path(self) -> Path:
        """凭证根目录：每个用户一个子目录。"""
        return self.data_path / "auth"

    @property
    def stores_path(self) -> Path:
        """聊天快照目录：每个用户一个 JSON 文件。"""
        return self.data_path / "stores"

    # Pydantic Settings 配置：支持 WARELAY_ 前缀的环境变量，嵌套用 __ 分隔
    model_config = ConfigDict(
        env_prefix="WARELAY_",
        env_nested_delimiter="__"
    )
