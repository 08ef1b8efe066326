"""Anthropic Messages API 适配器。

本模块负责：

1. 接收模型 id 与有序的 Message 列表。
2. 将其转换为 Messages API 的请求格式（model / max_tokens / messages）。
3. 携带 x-api-key 与 anthropic-version 请求头发送一次请求。
4. 取出响应中第一个 content 块的 text 作为回复。

错误映射：
- 非 2xx 状态码 -> ApiError(status_code)
- 网络错误、响应不是合法 JSON 或缺少回复文本 -> TransportError(cause)

不做重试；失败后的回滚由 SendPipeline 负责。
"""

from typing import Any, Dict, Optional, Sequence

import httpx

from nova_core.domain.exceptions import ApiError, TransportError, ValidationError
from nova_core.domain.models import Message
from nova_core.providers.registry import ANTHROPIC_CONFIG


class AnthropicClient:
    """Anthropic 客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - api_key: 可在运行时更新（用户在设置窗口里修改密钥后无需重建客户端）。
    """

    name = "anthropic"

    def __init__(self, settings, api_key: Optional[str] = None):
        # Settings 里包含 base_url、版本号、超时与可选的 max_tokens 覆盖值
        self._settings = settings
        self.api_key = api_key

    def complete(self, model: str, messages: Sequence[Message]) -> str:
        if not self.api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="API key not set")
        payload = self._build_payload(model, messages)
        base = self._settings.anthropic_base_url.rstrip("/")
        version = self._settings.anthropic_version
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base}/messages",
                    json=payload,
                    headers={
                        "x-api-key": self.api_key,
                        "anthropic-version": version,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise TransportError(cause=e)
        if not 200 <= resp.status_code < 300:
            raise ApiError(status_code=resp.status_code, message=self._error_message(resp))
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError(cause=e, message="response is not valid JSON")
        return self._parse_reply(data)

    def _build_payload(self, model: str, messages: Sequence[Message]) -> Dict[str, Any]:
        configured = getattr(self._settings, "max_output_tokens", None)
        return {
            "model": model,
            "max_tokens": configured or ANTHROPIC_CONFIG.max_tokens_for(model),
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }

    @staticmethod
    def _parse_reply(data: Any) -> str:
        """取第一个 content 块的 text。结构不符时视为传输层错误。"""

        try:
            text = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise TransportError(cause=e, message="unexpected response shape")
        if not isinstance(text, str):
            raise TransportError(message="reply text is not a string")
        return text

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        # 错误响应体形如 {"type": "error", "error": {"type": ..., "message": ...}}
        try:
            detail = resp.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return f"API Error: {resp.status_code}"
        return f"API Error: {resp.status_code} {detail}"
