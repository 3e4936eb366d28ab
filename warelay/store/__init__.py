"""
用户缓存模块 - 每个用户的内存聊天缓存及其定时快照。

- ChatRecord / ChatCollection：聊天记录与"不存在才插入"的集合
- UserStore：单个用户的缓存与快照文件
- UserStoreManager：按用户管理缓存的创建、定时快照与释放
"""

from warelay.store.chats import GROUP_SUFFIX, ChatCollection, ChatRecord, is_group_id
from warelay.store.manager import UserStore, UserStoreManager

__all__ = ["ChatRecord", "ChatCollection", "UserStore", "UserStoreManager", "GROUP_SUFFIX", "is_group_id"]
