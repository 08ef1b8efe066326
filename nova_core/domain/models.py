"""会话层级的数据模型。

本模块定义了存储内部共享的标准数据结构：

- Message: 一条对话消息（user/assistant）。
- Chat: 一个带标题的有序对话，属于未归档列表或某个 Project。
- Project: 命名的 Chat 容器。
- StoreEvent: ConversationStore 每次提交变更后发出的结构变化通知。

快照中的字段名使用 camelCase（createdAt、chatsWithoutProject），
与桌面端历史数据保持兼容；Python 侧属性统一使用 snake_case。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional


# 消息角色（与 Messages API 的 role 字段对应）
Role = Literal["user", "assistant"]

ROLES = ("user", "assistant")

# 新建会话的占位标题
DEFAULT_CHAT_TITLE = "New chat"

# 自动标题截取长度
TITLE_MAX_CHARS = 50
TITLE_ELLIPSIS = "..."


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def derive_title(text: str) -> str:
    """根据第一条用户消息生成标题：前 50 个字符，截断时追加省略号。"""

    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return text


@dataclass(frozen=True)
class Message:
    """一条对话消息。追加后不可修改，只能整体移除（回滚）。"""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass
class Chat:
    id: str
    title: str = DEFAULT_CHAT_TITLE
    messages: List[Message] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at,
        }


@dataclass
class Project:
    id: str
    name: str
    chats: List[Chat] = field(default_factory=list)
    # 仅为展示层提示（侧边栏是否展开）
    expanded: bool = True
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "chats": [c.to_dict() for c in self.chats],
            "expanded": self.expanded,
            "createdAt": self.created_at,
        }


EventKind = Literal[
    "loaded",
    "project_created",
    "project_renamed",
    "project_deleted",
    "project_toggled",
    "chat_created",
    "chat_deleted",
    "chat_moved",
    "message_appended",
    "message_removed",
    "persistence_failed",
]


@dataclass(frozen=True)
class StoreEvent:
    """结构变化事件。

    - kind: 事件类型。
    - chat_id / project_id: 受影响的实体（若有）。
    - error: 仅 persistence_failed 事件携带，供 UI 提示用户。
    """

    kind: EventKind
    chat_id: Optional[str] = None
    project_id: Optional[str] = None
    error: Optional[Exception] = None
