"""Completion 服务集成层。

该包下的模块负责：
- 定义 CompletionClient 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供具体实现 (anthropic_client)。
"""

from typing import Optional

from nova_core.config.settings import Settings, settings
from nova_core.providers.base import CompletionClient
from nova_core.providers.anthropic_client import AnthropicClient


def create_client(api_key: Optional[str] = None, cfg: Optional[Settings] = None) -> CompletionClient:
    """创建 Completion 客户端。api_key 为空时回退到配置中的 anthropic_api_key。"""

    cfg = cfg or settings
    return AnthropicClient(cfg, api_key=api_key or cfg.anthropic_api_key)
