"""对外 API 服务模块。

ChatApp 把配置、快照存储、ConversationStore、Completion 客户端与 SendPipeline
组装在一起，供展示层（窗口、菜单）调用。启动时加载或迁移快照，关闭时落盘：

    with ChatApp() as app:
        chat_id = app.store.create_chat()
        reply = app.send(chat_id, "Hello")
"""

from typing import Any, Dict, List, Optional
import threading

from pydantic import ValidationError as SchemaError

from nova_core.config.settings import Settings, settings
from nova_core.config.user_settings import (
    UserSettings,
    load_user_settings,
    save_user_settings,
    user_settings_path,
)
from nova_core.domain.conversation import ConversationStore, SnapshotStorage
from nova_core.domain.exceptions import ValidationError
from nova_core.domain.models import Message
from nova_core.infrastructure.logging.logger import logger
from nova_core.infrastructure.storage.json_store import JsonSnapshotStorage
from nova_core.providers import create_client
from nova_core.providers.base import CompletionClient
from nova_core.providers.registry import ANTHROPIC_CONFIG, ModelConfig, available_models
from nova_core.flows.send_pipeline import SendPipeline


class ChatApp:
    def __init__(
        self,
        cfg: Optional[Settings] = None,
        storage: Optional[SnapshotStorage] = None,
        client: Optional[CompletionClient] = None,
    ):
        self.cfg = cfg or settings
        self._settings_path = user_settings_path(self.cfg)
        self.user_settings = load_user_settings(self._settings_path)
        self.store = ConversationStore.open(
            storage
            or JsonSnapshotStorage(
                root=self.cfg.storage_root,
                store_file=self.cfg.store_file,
                legacy_file=self.cfg.legacy_store_file,
            )
        )
        self.client = client or create_client(self.user_settings.credential(self.cfg), self.cfg)
        self.pipeline = SendPipeline(self.store, self.client, model=self.user_settings.model)
        logger.info(
            "ChatApp started",
            extra={"extra": {"projects": len(self.store.list_projects()), "unfiled": len(self.store.list_unfiled_chats())}},
        )

    def __enter__(self) -> "ChatApp":
        return self

    def __exit__(self, *exc) -> bool:
        self.shutdown()
        return False

    def send(self, chat_id: str, text: str, cancel_event: Optional[threading.Event] = None) -> str:
        """发送消息。未配置密钥时直接拒绝，不做乐观更新。"""

        if not self.user_settings.credential(self.cfg):
            raise ValidationError(code="MISSING_API_KEY", message="enter an API key in settings first")
        return self.pipeline.send(chat_id, text, cancel_event=cancel_event)

    def visible_messages(self, chat_id: str) -> List[Message]:
        """展示窗口：最后 maxMessages 条消息。"""
        return self.store.last_messages(chat_id, self.user_settings.max_messages)

    def available_models(self) -> List[ModelConfig]:
        """设置窗口的模型下拉项；当前选择不在表中时追加在末尾，保证可回显。"""

        models = available_models()
        if all(m.model_id != self.user_settings.model for m in models):
            current = self.user_settings.model
            models.append(ModelConfig(model_id=current, label=current, max_tokens=ANTHROPIC_CONFIG.max_tokens_for(current)))
        return models

    def update_settings(self, **changes: Any) -> UserSettings:
        """更新并保存用户设置（api_key / model / max_messages）。

        Raises:
            ValidationError: 取值不合法（如 max_messages < 1）
            PersistenceError: settings.json 写入失败
        """

        merged: Dict[str, Any] = self.user_settings.model_dump()
        merged.update({k: v for k, v in changes.items() if v is not None})
        if isinstance(merged.get("api_key"), str):
            merged["api_key"] = merged["api_key"].strip()
        try:
            data = UserSettings.model_validate(merged)
        except SchemaError as e:
            raise ValidationError(code="VALIDATION_ERROR", message=str(e))
        save_user_settings(data, self._settings_path)
        self.user_settings = data
        if hasattr(self.client, "api_key"):
            self.client.api_key = data.credential(self.cfg)
        self.pipeline.model = data.model
        return data

    def shutdown(self) -> bool:
        return self.store.close()
