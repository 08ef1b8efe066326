"""用户设置文件（settings.json）读写。

设置窗口保存的内容：API 密钥、模型、显示的最大消息数。
文件缺失或格式错误时返回默认值，不会阻止启动。
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from nova_core.config.settings import Settings, settings
from nova_core.domain.exceptions import PersistenceError
from nova_core.infrastructure.logging.logger import logger


class UserSettings(BaseModel):
    """settings.json 的结构，字段名沿用 camelCase。"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str = Field(default="", alias="apiKey")
    model: str = Field(default_factory=lambda: settings.default_model)
    max_messages: int = Field(default=50, ge=1, alias="maxMessages")

    def credential(self, cfg: Optional[Settings] = None) -> Optional[str]:
        """实际使用的密钥：优先用户设置，其次环境配置。"""

        cfg = cfg or settings
        return self.api_key.strip() or cfg.anthropic_api_key or None


def user_settings_path(cfg: Optional[Settings] = None) -> Path:
    cfg = cfg or settings
    return Path(cfg.storage_root) / cfg.user_settings_file


def load_user_settings(path: Optional[Path] = None) -> UserSettings:
    """读取 settings.json；不存在或损坏时返回默认值。"""

    path = path or user_settings_path()
    if not path.exists():
        return UserSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return UserSettings.model_validate(data)
    except (OSError, ValueError, SchemaError) as e:
        logger.error("Failed to load user settings", extra={"extra": {"path": str(path), "error": str(e)}})
        return UserSettings()


def save_user_settings(data: UserSettings, path: Optional[Path] = None) -> None:
    """写回 settings.json，失败抛 PersistenceError。"""

    path = path or user_settings_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(data.model_dump(by_alias=True), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    except OSError as e:
        raise PersistenceError(f"failed to save user settings: {e}", path=str(path))
