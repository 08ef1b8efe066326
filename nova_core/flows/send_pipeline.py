"""发送流水线：一次用户回合的乐观更新与提交/回滚。

状态机：Idle -> AwaitingReply -> Idle。全局只允许一个发送在途，
第二个请求立即以 BusyError 失败（不排队）。

一轮对话要么用户消息与助手回复都保留并落盘，要么用户消息被回滚。
首条消息设置的标题不随回滚撤销。
"""

import logging
import threading
import time
from typing import Any, Dict, Literal, Optional
from uuid import uuid4

from nova_core.config.settings import settings
from nova_core.domain.conversation import ConversationStore
from nova_core.domain.exceptions import BusyError, ValidationError
from nova_core.flows.graph import build_send_graph
from nova_core.infrastructure.logging.logger import logger
from nova_core.providers.base import CompletionClient


PipelineState = Literal["idle", "awaiting_reply"]


class SendPipeline:
    def __init__(
        self,
        store: ConversationStore,
        client: CompletionClient,
        model: Optional[str] = None,
    ):
        self._store = store
        self._client = client
        # 设置窗口切换模型后由上层直接更新
        self.model = model or settings.default_model
        self._guard = threading.Lock()
        self._in_flight = False
        self._graph = build_send_graph(store, client)

    @property
    def state(self) -> PipelineState:
        return "awaiting_reply" if self._in_flight else "idle"

    def send(self, chat_id: str, text: str, cancel_event: Optional[threading.Event] = None) -> str:
        """发送一条用户消息并返回助手回复。

        Args:
            chat_id: 目标会话
            text: 用户输入（首尾空白会被去掉）
            cancel_event: 可选的取消标记；在回复提交前被设置则回滚并抛 SendCancelledError

        Raises:
            ValidationError: 文本为空或会话不存在
            BusyError: 已有发送在途
            ApiError / TransportError: Completion 服务失败（用户消息已回滚）
        """

        content = (text or "").strip()
        if not content:
            raise ValidationError(code="EMPTY_TEXT", message="message text must not be empty")
        if self._store.find_chat(chat_id) is None:
            raise ValidationError(code="CHAT_NOT_FOUND", message=f"unknown chat: {chat_id}")

        trace_id = f"tr-{uuid4().hex}"
        log_ctx: Dict[str, Any] = {"trace_id": trace_id, "chat_id": chat_id}
        with self._guard:
            if self._in_flight:
                self._log(logging.INFO, "Send rejected, another send in flight", log_ctx)
                raise BusyError()
            self._in_flight = True

        start_time = time.time()
        try:
            result = self._graph.invoke(
                {
                    "trace_id": trace_id,
                    "chat_id": chat_id,
                    "text": content,
                    "model": self.model,
                    "reply": None,
                    "error": None,
                    "cancel_event": cancel_event,
                }
            )
        finally:
            with self._guard:
                self._in_flight = False

        elapsed_ms = int((time.time() - start_time) * 1000)
        error = result.get("error")
        if error is not None:
            self._log(logging.WARNING, "Send failed", log_ctx, elapsed_ms=elapsed_ms, error=str(error))
            raise error
        reply = result["reply"]
        self._log(
            logging.INFO,
            "Send committed",
            log_ctx,
            model=self.model,
            provider=getattr(self._client, "name", "unknown"),
            reply_chars=len(reply),
            elapsed_ms=elapsed_ms,
        )
        return reply

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
