"""会话层级存储：Project / Chat / Message。

ConversationStore 是持久化状态的唯一拥有者，负责：

1. 维护结构不变量（chat id 全局唯一、每个 chat 只属于一个容器、新建项插入队首）。
2. 快照的序列化 / 反序列化，以及从旧版（v1，裸 chat 列表）快照迁移。
3. 每次提交变更后发出 StoreEvent，供展示层订阅刷新。

所有变更与读取都在同一把 RLock 下串行执行；持久化是整份快照重写，
并发写入会互相覆盖。发送消息时的网络请求不持有该锁。

结构性操作（新建/重命名/删除/折叠/移动）立即落盘；消息的追加与回滚
只修改内存，由 SendPipeline 在一轮对话成功后调用 save()；若等待回复期间
快照已被结构性操作写入，回滚后会再次 save()，磁盘上不留下半轮对话。
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

from nova_core.domain.exceptions import MigrationError, PersistenceError, ValidationError
from nova_core.domain.models import (
    DEFAULT_CHAT_TITLE,
    ROLES,
    Chat,
    Message,
    Project,
    StoreEvent,
    derive_title,
    utc_now_iso,
)
from nova_core.infrastructure.logging.logger import logger


# move_chat 的目标：未归档列表
UNFILED = "unfiled"

Listener = Callable[[StoreEvent], None]


class SnapshotStorage(Protocol):
    """快照持久化协议。

    - read_current / read_legacy: 文件不存在时返回 None。
    - read_current 读取失败抛 PersistenceError，read_legacy 格式损坏抛 MigrationError。
    - write_current: 整份覆盖写入，失败抛 PersistenceError。
    """

    def read_current(self) -> Optional[Any]:
        ...

    def read_legacy(self) -> Optional[Any]:
        ...

    def write_current(self, snapshot: Dict[str, Any]) -> None:
        ...


class ConversationStore:
    def __init__(self, storage: Optional[SnapshotStorage] = None):
        self._storage = storage
        self._lock = threading.RLock()
        self._unfiled: List[Chat] = []
        self._projects: List[Project] = []
        self._listeners: List[Listener] = []
        # 每次尝试写快照递增；写入失败也可能已截断文件
        self._write_attempts = 0

    # ---- 生命周期 ----

    @classmethod
    def open(cls, storage: SnapshotStorage) -> "ConversationStore":
        """启动时构造：读取当前快照，不存在则尝试迁移旧版快照。

        任何读取/迁移失败都退化为空存储，不会让启动失败。
        """

        store = cls(storage)
        store._load_or_migrate()
        return store

    def close(self) -> bool:
        """关闭前落盘。"""
        return self.save()

    def _load_or_migrate(self) -> None:
        try:
            current = self._storage.read_current()
        except PersistenceError as e:
            self._log(logging.ERROR, "Snapshot unreadable, starting empty", code=e.code, error=e.message)
            return
        if current is not None:
            try:
                self.load(current)
            except PersistenceError as e:
                self._log(logging.ERROR, "Snapshot malformed, starting empty", code=e.code, error=e.message)
            return

        try:
            legacy = self._storage.read_legacy()
            if legacy is None:
                self._log(logging.INFO, "No snapshot found, starting empty")
                return
            self.load(self.migrate_legacy(legacy))
        except (MigrationError, PersistenceError) as e:
            self._log(logging.WARNING, "Legacy snapshot not migrated, starting empty", code=e.code, error=e.message)
            return
        self._log(logging.INFO, "Migrated legacy snapshot", chats=len(self._unfiled))
        self.save()

    # ---- 订阅 ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册结构变化监听器，返回取消订阅函数。"""

        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Store listener failed", extra={"extra": {"event": event.kind}})

    # ---- Project ----

    def create_project(self, name: Optional[str]) -> str:
        if name is None or not name.strip():
            raise ValidationError(code="EMPTY_NAME", message="project name must not be empty")
        with self._lock:
            project = Project(id=self._new_id("p"), name=name.strip())
            self._projects.insert(0, project)
            self.save()
            self._emit(StoreEvent("project_created", project_id=project.id))
        return project.id

    def rename_project(self, project_id: str, name: Optional[str]) -> bool:
        """重命名项目。name 为 None 表示用户取消了输入，视为 no-op。"""

        if name is None:
            return False
        if not name.strip():
            raise ValidationError(code="EMPTY_NAME", message="project name must not be empty")
        with self._lock:
            project = self._find_project(project_id)
            if project is None:
                return False
            project.name = name.strip()
            self.save()
            self._emit(StoreEvent("project_renamed", project_id=project_id))
        return True

    def delete_project(
        self,
        project_id: str,
        confirmed: bool = True,
        active_chat_id: Optional[str] = None,
    ) -> bool:
        """删除项目及其中全部会话。

        Returns:
            active_chat_id 是否位于被删除的项目中（调用方据此清空当前选中）。
        """

        if not confirmed:
            return False
        with self._lock:
            project = self._find_project(project_id)
            if project is None:
                return False
            self._projects.remove(project)
            cleared = active_chat_id is not None and any(c.id == active_chat_id for c in project.chats)
            self.save()
            self._emit(StoreEvent("project_deleted", project_id=project_id))
        return cleared

    def toggle_expanded(self, project_id: str) -> Optional[bool]:
        with self._lock:
            project = self._find_project(project_id)
            if project is None:
                return None
            project.expanded = not project.expanded
            self.save()
            self._emit(StoreEvent("project_toggled", project_id=project_id))
            return project.expanded

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            return self._find_project(project_id)

    def list_projects(self) -> List[Project]:
        with self._lock:
            return list(self._projects)

    # ---- Chat ----

    def create_chat(self, parent_project_id: Optional[str] = None) -> str:
        with self._lock:
            chat = Chat(id=self._new_id("c"), title=DEFAULT_CHAT_TITLE)
            project = self._find_project(parent_project_id) if parent_project_id else None
            if project is not None:
                project.chats.insert(0, chat)
            else:
                self._unfiled.insert(0, chat)
            self.save()
            self._emit(StoreEvent("chat_created", chat_id=chat.id, project_id=project.id if project else None))
        return chat.id

    def delete_chat(
        self,
        chat_id: str,
        confirmed: bool = True,
        active_chat_id: Optional[str] = None,
    ) -> bool:
        """删除会话。返回被删除的是否为当前选中会话。"""

        if not confirmed:
            return False
        with self._lock:
            found = self._locate(chat_id)
            if found is None:
                return False
            container, index, owner = found
            del container[index]
            self.save()
            self._emit(StoreEvent("chat_deleted", chat_id=chat_id, project_id=owner))
        return chat_id == active_chat_id

    def move_chat(self, chat_id: str, target: str) -> None:
        """把会话移到 target（UNFILED 或项目 id）的队首，一步完成。"""

        with self._lock:
            found = self._locate(chat_id)
            if found is None:
                raise ValidationError(code="CHAT_NOT_FOUND", message=f"unknown chat: {chat_id}")
            if target == UNFILED:
                destination = self._unfiled
                target_project_id = None
            else:
                project = self._find_project(target)
                if project is None:
                    raise ValidationError(code="PROJECT_NOT_FOUND", message=f"unknown project: {target}")
                destination = project.chats
                target_project_id = project.id
            container, index, _ = found
            chat = container.pop(index)
            destination.insert(0, chat)
            self.save()
            self._emit(StoreEvent("chat_moved", chat_id=chat_id, project_id=target_project_id))

    def find_chat(self, chat_id: str) -> Optional[Chat]:
        with self._lock:
            found = self._locate(chat_id)
            if found is None:
                return None
            container, index, _ = found
            return container[index]

    def locate_chat(self, chat_id: str) -> Optional[str]:
        """返回会话所在容器：UNFILED、项目 id，未找到返回 None。"""

        with self._lock:
            found = self._locate(chat_id)
            if found is None:
                return None
            return found[2] or UNFILED

    def list_unfiled_chats(self) -> List[Chat]:
        with self._lock:
            return list(self._unfiled)

    # ---- Message ----

    def append_message(self, chat_id: str, message: Message) -> int:
        """追加消息，返回新的消息数。会话的第一条消息决定其标题。"""

        if message.role not in ROLES:
            raise ValidationError(code="VALIDATION_ERROR", message=f"unknown role: {message.role}")
        with self._lock:
            chat = self.find_chat(chat_id)
            if chat is None:
                raise ValidationError(code="CHAT_NOT_FOUND", message=f"unknown chat: {chat_id}")
            chat.messages.append(message)
            if len(chat.messages) == 1:
                chat.title = derive_title(message.content)
            self._emit(StoreEvent("message_appended", chat_id=chat_id))
            return len(chat.messages)

    def remove_last_message(self, chat_id: str) -> Message:
        with self._lock:
            chat = self.find_chat(chat_id)
            if chat is None:
                raise ValidationError(code="CHAT_NOT_FOUND", message=f"unknown chat: {chat_id}")
            if not chat.messages:
                raise ValidationError(code="EMPTY_CHAT", message=f"chat has no messages: {chat_id}")
            removed = chat.messages.pop()
            self._emit(StoreEvent("message_removed", chat_id=chat_id))
            return removed

    def last_messages(self, chat_id: str, limit: int) -> List[Message]:
        """返回会话最后 limit 条消息（时间正序）。"""

        if limit <= 0:
            return []
        with self._lock:
            chat = self.find_chat(chat_id)
            if chat is None:
                return []
            return list(chat.messages[-limit:])

    def list_messages(self, chat_id: str) -> List[Message]:
        """返回会话全部消息的副本；未知会话返回空列表。"""

        with self._lock:
            chat = self.find_chat(chat_id)
            if chat is None:
                return []
            return list(chat.messages)

    @property
    def write_attempts(self) -> int:
        """已尝试写入快照的次数，用于判断某段时间内是否落过盘。"""
        return self._write_attempts

    # ---- 快照 ----

    def serialize(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "projects": [p.to_dict() for p in self._projects],
                "chatsWithoutProject": [c.to_dict() for c in self._unfiled],
            }

    def load(self, snapshot: Any) -> None:
        """用快照整体替换内存状态。格式错误抛 PersistenceError，原状态保持不变。"""

        if not isinstance(snapshot, dict):
            raise PersistenceError("snapshot must be an object")
        raw_projects = snapshot.get("projects") or []
        raw_unfiled = snapshot.get("chatsWithoutProject") or []
        if not isinstance(raw_projects, list) or not isinstance(raw_unfiled, list):
            raise PersistenceError("snapshot containers must be lists")

        seen: set[str] = set()
        try:
            unfiled = [self._chat_from_dict(c, seen) for c in raw_unfiled]
            projects: List[Project] = []
            project_ids: set[str] = set()
            for raw in raw_projects:
                project = self._project_from_dict(raw, seen)
                if project.id in project_ids:
                    project.id = self._fresh_id("p", project_ids)
                project_ids.add(project.id)
                projects.append(project)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"malformed snapshot: {e}")

        with self._lock:
            self._unfiled = unfiled
            self._projects = projects
            self._emit(StoreEvent("loaded"))

    @staticmethod
    def migrate_legacy(old_snapshot: Any) -> Dict[str, Any]:
        """v1 快照（裸 chat 列表）→ 当前快照格式，顺序不变。"""

        if not isinstance(old_snapshot, list):
            raise MigrationError("legacy snapshot must be a list of chats")
        for item in old_snapshot:
            if not isinstance(item, dict):
                raise MigrationError("legacy chat entries must be objects")
        return {"projects": [], "chatsWithoutProject": list(old_snapshot)}

    def save(self) -> bool:
        """整份快照覆盖写入。失败时记录日志并发出 persistence_failed，内存状态不受影响。"""

        if self._storage is None:
            return True
        with self._lock:
            snapshot = self.serialize()
            self._write_attempts += 1
            try:
                self._storage.write_current(snapshot)
            except PersistenceError as e:
                self._log(logging.ERROR, "Snapshot write failed", code=e.code, error=e.message)
                self._emit(StoreEvent("persistence_failed", error=e))
                return False
        return True

    # ---- 内部工具 ----

    def _find_project(self, project_id: Optional[str]) -> Optional[Project]:
        for project in self._projects:
            if project.id == project_id:
                return project
        return None

    def _locate(self, chat_id: str) -> Optional[Tuple[List[Chat], int, Optional[str]]]:
        # 查找顺序：未归档列表，然后按项目顺序
        for i, chat in enumerate(self._unfiled):
            if chat.id == chat_id:
                return self._unfiled, i, None
        for project in self._projects:
            for i, chat in enumerate(project.chats):
                if chat.id == chat_id:
                    return project.chats, i, project.id
        return None

    def _all_ids(self) -> set[str]:
        ids = {c.id for c in self._unfiled}
        for project in self._projects:
            ids.add(project.id)
            ids.update(c.id for c in project.chats)
        return ids

    def _new_id(self, prefix: str) -> str:
        return self._fresh_id(prefix, self._all_ids())

    @staticmethod
    def _fresh_id(prefix: str, taken: set[str]) -> str:
        while True:
            candidate = f"{prefix}-{uuid4().hex}"
            if candidate not in taken:
                return candidate

    def _chat_from_dict(self, data: Dict[str, Any], seen: set[str]) -> Chat:
        messages = []
        for raw in data.get("messages") or []:
            role = raw["role"]
            if role not in ROLES:
                raise ValueError(f"unknown role {role!r}")
            messages.append(Message(role=role, content=str(raw.get("content") or "")))
        chat_id = str(data.get("id") or "")
        if not chat_id or chat_id in seen:
            # 旧数据里的时间戳 id 可能重复，重新分配
            new_id = self._fresh_id("c", seen)
            self._log(logging.WARNING, "Reassigned chat id", old_id=chat_id, new_id=new_id)
            chat_id = new_id
        seen.add(chat_id)
        return Chat(
            id=chat_id,
            title=str(data.get("title") or DEFAULT_CHAT_TITLE),
            messages=messages,
            created_at=str(data.get("createdAt") or utc_now_iso()),
        )

    def _project_from_dict(self, data: Dict[str, Any], seen: set[str]) -> Project:
        return Project(
            id=str(data.get("id") or self._fresh_id("p", seen)),
            name=str(data["name"]),
            chats=[self._chat_from_dict(c, seen) for c in data.get("chats") or []],
            expanded=bool(data.get("expanded", True)),
            created_at=str(data.get("createdAt") or utc_now_iso()),
        )

    @staticmethod
    def _log(level: int, message: str, **fields: Any) -> None:
        logger.log(level, message, extra={"extra": fields})
