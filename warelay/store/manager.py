"""
用户缓存管理器 - 每个用户的聊天缓存的创建、定时快照与释放。

本模块包含两个核心类：
- UserStore：单个用户的聊天缓存（ChatCollection + 快照文件路径）
- UserStoreManager：按 user_id 管理 UserStore 的生命周期

【生命周期】
1. acquire(user_id)：首次连接成功（connection open）时调用。已存在则直接返回；
   否则新建缓存，在工作线程中从快照文件恢复，并启动该用户的定时快照任务。
2. 定时快照：每隔 flush_interval_s 秒把当前内容写入快照文件。
   快照任务只读取内存内容，从不修改它。
3. release(user_id)：会话进入终止状态（登出 / 前端断开）时调用。
   取消定时任务、最后写一次快照、从管理器中移除。
4. close_all()：进程退出时释放全部缓存。

缓存的生命周期独立于协议会话：断线重连期间缓存保持不变。

【存储路径】
<data_dir>/stores/store_<user_id>.json，内容为 {"userId", "savedAt", "chats": [...]}

【Java 开发者类比】
- UserStoreManager 类似于一个带定时持久化的 ConcurrentHashMap<String, UserStore>
- 定时快照任务类似于 ScheduledExecutorService.scheduleAtFixedRate
"""

import asyncio
import json
from pathlib import Path

from loguru import logger

from warelay.store.chats import ChatCollection, ChatRecord
from warelay.utils.helpers import encode_filename, ensure_dir, read_json, timestamp

# 默认快照间隔：10 秒
DEFAULT_FLUSH_INTERVAL_S = 10.0


class UserStore:
    """
    单个用户的聊天缓存。

    属性:
        user_id: 所属用户
        path: 快照文件路径
        chats: 聊天集合
    """

    def __init__(self, user_id: str, path: Path):
        self.user_id = user_id
        self.path = path
        self.chats = ChatCollection()

    def read_from_file(self) -> int:
        """
        从快照文件恢复内容。

        文件不存在时什么也不做；文件损坏时记录警告并保持空缓存，
        不会中断连接流程。

        返回:
            恢复的聊天数量
        """
        try:
            data = read_json(self.path)
        except (ValueError, OSError) as e:
            logger.warning(f"Failed to load store snapshot {self.path}: {e}")
            return 0
        if not data:
            return 0

        restored = 0
        for item in data.get("chats", []):
            try:
                if self.chats.upsert(ChatRecord.from_dict(item)):
                    restored += 1
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed chat in {self.path}: {e}")
        return restored

    async def load(self) -> int:
        """在工作线程中执行 read_from_file()，不阻塞其他用户的事件处理。"""
        return await asyncio.to_thread(self.read_from_file)

    def serialize(self) -> str:
        """把当前内容序列化为 JSON 字符串（在事件循环内完成，保证读到的是一致快照）。"""
        return json.dumps(
            {"userId": self.user_id, "savedAt": timestamp(), "chats": self.chats.snapshot()},
            ensure_ascii=False,
        )

    def _write(self, content: str) -> None:
        ensure_dir(self.path.parent)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(self.path)

    async def write_to_file(self) -> None:
        """写入快照文件（序列化在事件循环内，磁盘写入在工作线程）。"""
        content = self.serialize()
        await asyncio.to_thread(self._write, content)


class UserStoreManager:
    """
    用户缓存管理器。

    属性:
        stores_dir: 快照目录
        flush_interval_s: 定时快照间隔（秒）
        _stores: {user_id: UserStore}
        _flush_tasks: {user_id: 定时快照任务}
    """

    def __init__(self, stores_dir: Path, flush_interval_s: float = DEFAULT_FLUSH_INTERVAL_S):
        self.stores_dir = stores_dir
        self.flush_interval_s = flush_interval_s
        self._stores: dict[str, UserStore] = {}
        self._flush_tasks: dict[str, asyncio.Task] = {}

    def store_path(self, user_id: str) -> Path:
        return self.stores_dir / f"store_{encode_filename(user_id)}.json"

    async def acquire(self, user_id: str) -> UserStore:
        """
        获取或创建用户缓存（幂等）。

        新建时：在工作线程中从快照恢复 → 登记到管理器 → 启动定时快照任务。
        恢复完成前缓存不会登记，其他事件看不到"建了一半"的缓存；
        恢复期间若已有同一用户的缓存登记，则返回已登记的那一个。

        参数:
            user_id: 用户 ID

        返回:
            该用户的 UserStore
        """
        store = self._stores.get(user_id)
        if store is not None:
            logger.debug(f"Store already exists for {user_id}")
            return store

        store = UserStore(user_id, self.store_path(user_id))
        restored = await store.load()
        existing = self._stores.get(user_id)
        if existing is not None:
            return existing
        self._stores[user_id] = store
        self._flush_tasks[user_id] = asyncio.create_task(self._flush_loop(store))
        logger.info(f"New store created for {user_id} ({restored} chats restored)")
        return store

    def get(self, user_id: str) -> UserStore | None:
        """获取已存在的用户缓存，不存在时返回 None（不会创建）。"""
        return self._stores.get(user_id)

    async def release(self, user_id: str) -> None:
        """
        释放用户缓存：取消定时任务 → 最后写一次快照 → 移除。

        用户缓存不存在时什么也不做（幂等）。
        """
        store = self._stores.pop(user_id, None)
        task = self._flush_tasks.pop(user_id, None)
        if task:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if store is None:
            return
        try:
            await store.write_to_file()
        except OSError as e:
            logger.error(f"Final flush failed for {user_id}: {e}")
        logger.info(f"Store released for {user_id}")

    async def close_all(self) -> None:
        """释放全部用户缓存（进程退出时调用）。"""
        for user_id in list(self._stores):
            await self.release(user_id)

    async def _flush_loop(self, store: UserStore) -> None:
        """定时快照主循环。先等待一个间隔，再写快照，循环往复。"""
        while True:
            try:
                await asyncio.sleep(self.flush_interval_s)
                await store.write_to_file()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Store flush error for {store.user_id}: {e}")

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._stores

    def __len__(self) -> int:
        return len(self._stores)
