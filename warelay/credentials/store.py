"""
凭证存储实现模块 - 每个用户的认证材料的持久化。

本模块包含两个类：
- CredentialStore：凭证存储抽象基类，编排器只依赖这个接口
- FileCredentialStore：基于文件系统的多文件实现

【存储格式 - 多文件】
每个用户一个目录：<data_dir>/auth/multi_auth_info_<user_id>/
目录下每个顶层凭证键对应一个 JSON 文件（如 creds.json、
pre-key-1.json），与 Baileys 的 useMultiFileAuthState 布局一致。
凭证刷新时只覆盖收到的键，其他文件保持不变。
用户 ID 和键名都经过百分号编码（encode_filename）再拼成路径：
编码可逆，不同的用户 / 键名一定落在不同的文件上，也无法拼出上级目录。

【调用时机】
- 建立连接前：load()
- 协议客户端每次发出 creds.update：save()
- 收到登出原因的连接关闭：delete()

文件读写都放到工作线程中执行（asyncio.to_thread），不阻塞事件循环。
"""

import asyncio
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from loguru import logger

from warelay.utils.helpers import atomic_write_json, decode_filename, encode_filename, ensure_dir, read_json

AUTH_DIR_PREFIX = "multi_auth_info_"
KEY_SUFFIX = ".json"


class CredentialStore(ABC):
    """
    凭证存储抽象基类。

    所有方法都以 user_id 为键，不同用户之间互不影响。
    """

    @abstractmethod
    async def load(self, user_id: str) -> dict[str, Any]:
        """加载用户的全部凭证。从未保存过时返回空字典。"""
        pass

    @abstractmethod
    async def save(self, user_id: str, creds: dict[str, Any]) -> None:
        """保存（覆盖）凭证中出现的各个键。"""
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        """删除用户的全部凭证。返回 True 表示确实删除了内容。"""
        pass

    @abstractmethod
    async def exists(self, user_id: str) -> bool:
        """用户是否已有持久化的凭证。"""
        pass

    @abstractmethod
    def list_users(self) -> list[str]:
        """列出所有已保存凭证的用户 ID。"""
        pass


class FileCredentialStore(CredentialStore):
    """
    基于文件系统的多文件凭证存储。

    属性:
        root: 凭证根目录（通常为 ~/.warelay/auth）
    """

    def __init__(self, root: Path):
        self.root = root

    def user_dir(self, user_id: str) -> Path:
        """用户凭证目录路径。"""
        return self.root / f"{AUTH_DIR_PREFIX}{encode_filename(user_id)}"

    @staticmethod
    def _key_filename(key: str) -> str:
        # 键名里可能带冒号、斜杠等字符（如 session-123:4@s.whatsapp.net），编码必须可逆
        return f"{encode_filename(key)}{KEY_SUFFIX}"

    @staticmethod
    def _key_from_filename(filename: str) -> str:
        return decode_filename(filename[: -len(KEY_SUFFIX)])

    def _load_sync(self, user_id: str) -> dict[str, Any]:
        directory = self.user_dir(user_id)
        if not directory.is_dir():
            return {}

        creds: dict[str, Any] = {}
        for path in sorted(directory.glob(f"*{KEY_SUFFIX}")):
            try:
                creds[self._key_from_filename(path.name)] = read_json(path)
            except ValueError as e:
                # 单个文件损坏不影响其余键，协议客户端会重新生成缺失的部分
                logger.warning(f"Skipping unreadable credential file {path}: {e}")
        return creds

    def _save_sync(self, user_id: str, creds: dict[str, Any]) -> None:
        directory = ensure_dir(self.user_dir(user_id))
        for key, value in creds.items():
            path = directory / self._key_filename(key)
            if value is None:
                # None 表示该键已被协议客户端作废
                path.unlink(missing_ok=True)
            else:
                atomic_write_json(path, value)

    def _delete_sync(self, user_id: str) -> bool:
        directory = self.user_dir(user_id)
        if not directory.exists():
            return False
        shutil.rmtree(directory, ignore_errors=True)
        return True

    async def load(self, user_id: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._load_sync, user_id)

    async def save(self, user_id: str, creds: dict[str, Any]) -> None:
        await asyncio.to_thread(self._save_sync, user_id, creds)
        logger.debug(f"Saved {len(creds)} credential key(s) for {user_id}")

    async def delete(self, user_id: str) -> bool:
        removed = await asyncio.to_thread(self._delete_sync, user_id)
        if removed:
            logger.info(f"Auth data for {user_id} removed")
        return removed

    async def exists(self, user_id: str) -> bool:
        return self.user_dir(user_id).is_dir()

    def list_users(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            decode_filename(p.name[len(AUTH_DIR_PREFIX):])
            for p in self.root.iterdir()
            if p.is_dir() and p.name.startswith(AUTH_DIR_PREFIX)
        )
