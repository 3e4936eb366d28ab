"""
聊天缓存数据模型 - 单个用户的聊天/群组记录。

本模块包含两个核心类：
- ChatRecord：一条聊天或群组的元数据与消息列表
- ChatCollection：按 id 索引、保持插入顺序的聊天集合

【写入语义】
ChatCollection.upsert() 是"不存在才插入"：同一个 id 的记录一旦存在，
后续的群组同步不会覆盖它（群组名称等元数据的变化不会被重新同步，
只有新出现的群组会被加入）。本模块从不删除记录。

【序列化格式】
发给前端和写入快照时使用 camelCase 键名：
{"id", "name", "participants", "conversationTimestamp", "unreadCount", "messages"}
"""

from dataclasses import dataclass, field
from typing import Any, Iterator

# WhatsApp 群组 JID 的后缀
GROUP_SUFFIX = "@g.us"


def is_group_id(chat_id: str) -> bool:
    """判断聊天 id 是否属于群组命名空间。"""
    return chat_id.endswith(GROUP_SUFFIX)


@dataclass
class ChatRecord:
    """
    单条聊天记录。

    属性:
        id: 聊天唯一标识（群组为 xxx@g.us）
        name: 显示名称（群组主题）
        participants: 参与者列表（原样保存协议客户端给出的结构）
        conversation_timestamp: 创建时间戳（秒）
        unread_count: 未读计数
        messages: 消息列表
    """
    id: str
    name: str = ""
    participants: list[Any] = field(default_factory=list)
    conversation_timestamp: int | None = None
    unread_count: int = 0
    messages: list[Any] = field(default_factory=list)

    @classmethod
    def from_group(cls, group: dict[str, Any]) -> "ChatRecord":
        """
        从协议客户端返回的群组元数据构造聊天记录。

        群组元数据字段：id、subject（主题）、participants、creation（创建时间）。
        """
        return cls(
            id=str(group["id"]),
            name=group.get("subject") or "",
            participants=list(group.get("participants") or []),
            conversation_timestamp=group.get("creation"),
            unread_count=0,
            messages=[],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "participants": self.participants,
            "conversationTimestamp": self.conversation_timestamp,
            "unreadCount": self.unread_count,
            "messages": self.messages,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatRecord":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            participants=list(data.get("participants") or []),
            conversation_timestamp=data.get("conversationTimestamp"),
            unread_count=int(data.get("unreadCount") or 0),
            messages=list(data.get("messages") or []),
        )


class ChatCollection:
    """
    按 id 索引的聊天集合（保持插入顺序）。

    所有方法都是同步的，中间没有 await，
    因此在协作式调度下每次修改天然是原子的。
    """

    def __init__(self, chats: list[ChatRecord] | None = None):
        self._chats: dict[str, ChatRecord] = {}
        for chat in chats or []:
            self.upsert(chat)

    def upsert(self, chat: ChatRecord) -> bool:
        """
        不存在才插入。

        返回:
            True 表示新插入，False 表示已存在（原记录保持不变）
        """
        if chat.id in self._chats:
            return False
        self._chats[chat.id] = chat
        return True

    def get(self, chat_id: str) -> ChatRecord | None:
        return self._chats.get(chat_id)

    def all(self) -> list[ChatRecord]:
        return list(self._chats.values())

    def list_groups(self) -> list[ChatRecord]:
        """只返回群组（id 以 @g.us 结尾的记录）。"""
        return [chat for chat in self._chats.values() if is_group_id(chat.id)]

    def snapshot(self) -> list[dict[str, Any]]:
        """当前内容的可序列化副本（供定时快照使用，不修改集合）。"""
        return [chat.to_dict() for chat in self._chats.values()]

    def __len__(self) -> int:
        return len(self._chats)

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._chats

    def __iter__(self) -> Iterator[ChatRecord]:
        return iter(list(self._chats.values()))
