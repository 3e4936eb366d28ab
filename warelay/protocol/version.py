"""
WhatsApp Web 版本解析 - 建立连接前获取最新的客户端版本号。

WhatsApp 服务端会拒绝过旧的 Web 客户端版本，因此每次建立连接前
都需要一个较新的版本号交给桥接服务。版本号从 Baileys 仓库发布的
JSON 文件中获取；拉取失败时使用配置中的后备版本，不阻断连接流程。

依赖：
- httpx：异步 HTTP 客户端
"""

import time

import httpx
from loguru import logger

# 版本号缓存时长：1 小时
DEFAULT_VERSION_TTL_S = 3600.0


def _valid_version(value: object) -> bool:
    return isinstance(value, list) and len(value) == 3 and all(isinstance(v, int) for v in value)


async def _request_version(url: str, timeout: float) -> list[int] | None:
    """请求版本 JSON 并校验格式。请求或解析失败时记录警告并返回 None。"""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
            response.raise_for_status()
            version = response.json().get("version")
        if _valid_version(version):
            return version
        logger.warning(f"Unexpected WhatsApp Web version payload from {url}: {version!r}")
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.warning(f"Failed to fetch latest WhatsApp Web version: {e}")
    return None


async def fetch_latest_version(url: str, fallback: list[int], timeout: float = 10.0) -> list[int]:
    """
    拉取最新的 WhatsApp Web 版本号。

    参数:
        url: 版本 JSON 的地址，内容形如 {"version": [2, 3000, 1015901307]}
        fallback: 拉取或解析失败时返回的版本号
        timeout: HTTP 超时（秒）

    返回:
        三段式版本号列表
    """
    return await _request_version(url, timeout) or list(fallback)


class VersionResolver:
    """
    带缓存的版本号解析器。

    同一进程内多个用户同时连接（或断线重连）时，只在缓存过期后才重新拉取。
    只缓存真正拉取到的版本号：拉取失败时本次返回后备版本，下次调用会重新拉取。
    """

    def __init__(self, url: str, fallback: list[int], ttl_s: float = DEFAULT_VERSION_TTL_S):
        self.url = url
        self.fallback = fallback
        self.ttl_s = ttl_s
        self._cached: list[int] | None = None
        self._fetched_at = 0.0

    async def __call__(self) -> list[int]:
        now = time.monotonic()
        if self._cached is not None and now - self._fetched_at < self.ttl_s:
            return self._cached
        version = await _request_version(self.url, timeout=10.0)
        if version is None:
            logger.debug(f"Using fallback WhatsApp Web version {'.'.join(map(str, self.fallback))}")
            return list(self.fallback)
        self._cached, self._fetched_at = version, now
        logger.debug(f"Using WhatsApp Web version {'.'.join(map(str, version))}")
        return version
