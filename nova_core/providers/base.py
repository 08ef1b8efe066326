"""CompletionClient 抽象接口。

SendPipeline 不直接依赖具体厂商的 HTTP 实现，而是依赖此协议：

- 每个厂商实现一个 CompletionClient（如 AnthropicClient）。
- 负责：把有序的 {role, content} 列表转成具体 API 请求，并从响应中取出回复文本。

客户端无状态、只尝试一次；重试、回滚等补偿逻辑全部由调用方负责。
"""

from typing import Protocol, Sequence

from nova_core.domain.models import Message


class CompletionClient(Protocol):
    """Completion 服务客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - complete(model, messages): 返回回复文本；失败抛 ApiError / TransportError。
    """

    name: str

    def complete(self, model: str, messages: Sequence[Message]) -> str:
        ...
