"""Provider 与模型配置。

设置窗口的模型下拉框从这里取可选项；max_tokens 随模型一起配置。
不在表中的模型 id 仍按原样发送，使用 Provider 的默认输出上限。
Settings.max_output_tokens 设置后优先于表中的值。"""

from dataclasses import dataclass
from typing import Dict


@dataclass
class ModelConfig:
    """单个模型的配置。"""

    model_id: str
    label: str
    max_tokens: int


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    default_max_tokens: int
    models: Dict[str, ModelConfig]

    def max_tokens_for(self, model_id: str) -> int:
        cfg = self.models.get(model_id)
        return cfg.max_tokens if cfg else self.default_max_tokens


ANTHROPIC_CONFIG = ProviderConfig(
    name="anthropic",
    default_max_tokens=4096,
    models={
        "claude-sonnet-4-5-20250929": ModelConfig(
            model_id="claude-sonnet-4-5-20250929",
            label="Claude Sonnet 4.5",
            max_tokens=4096,
        ),
        "claude-opus-4-1-20250805": ModelConfig(
            model_id="claude-opus-4-1-20250805",
            label="Claude Opus 4.1",
            max_tokens=8192,
        ),
        "claude-3-5-haiku-20241022": ModelConfig(
            model_id="claude-3-5-haiku-20241022",
            label="Claude Haiku 3.5",
            max_tokens=8192,
        ),
    },
)


def available_models() -> list[ModelConfig]:
    """设置窗口中可选的模型列表（保持声明顺序）。"""

    return list(ANTHROPIC_CONFIG.models.values())
