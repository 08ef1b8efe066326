"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
用户在设置窗口中修改的内容（API 密钥、模型）另存于 settings.json，见 user_settings。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("NOVA_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


def _default_storage_root() -> str:
    # 便携版把数据放在可执行文件旁边
    return os.getenv("PORTABLE_EXECUTABLE_DIR") or ".storage"


class Settings(BaseSettings):
    """应用配置。"""

    # ---- 存储 ----
    storage_root: str = Field(default_factory=_default_storage_root, description="数据目录")
    store_file: str = Field(default="chats_store.json", description="当前格式快照文件名")
    legacy_store_file: str = Field(default="chats.json", description="旧版（v1）快照文件名")
    user_settings_file: str = Field(default="settings.json", description="用户设置文件名")

    # ---- Completion 服务 ----
    anthropic_api_key: Optional[str] = Field(
        default=None,
        description="API 密钥（用户设置中的 apiKey 优先）",
    )
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com/v1",
        description="Messages API 基础URL",
    )
    anthropic_version: str = Field(default="2023-06-01", description="anthropic-version 请求头")
    default_model: str = Field(default="claude-sonnet-4-5-20250929", description="默认模型")
    max_output_tokens: Optional[int] = Field(
        default=None,
        ge=1,
        description="max_tokens 请求参数；留空时按模型表取值",
    )
    http_timeout: float = Field(default=120.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("anthropic_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _load_config_from_yaml,
            file_secret_settings,
        )


settings = Settings()
