"""LangGraph construction and node implementations for one user turn.

append_user -> request_completion -> commit | rollback
"""

from __future__ import annotations

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from nova_core.domain.conversation import ConversationStore
from nova_core.domain.exceptions import SendCancelledError, ValidationError
from nova_core.domain.models import Message
from nova_core.flows.state import SendState
from nova_core.infrastructure.logging.logger import logger
from nova_core.providers.base import CompletionClient


def _cancelled(state: SendState) -> bool:
    event = state.get("cancel_event")
    return event is not None and event.is_set()


def append_user_node(state: SendState, store: ConversationStore) -> SendState:
    # 乐观更新：立即对读者可见；首条消息会同时设置标题
    count = store.append_message(state["chat_id"], Message(role="user", content=state["text"]))
    state["writes_at_append"] = store.write_attempts
    logger.info("append_user_node", extra={"extra": {"trace_id": state["trace_id"], "messages": count}})
    return state


def request_completion_node(state: SendState, store: ConversationStore, client: CompletionClient) -> SendState:
    if _cancelled(state):
        state["error"] = SendCancelledError()
        return state
    history = store.list_messages(state["chat_id"])
    try:
        state["reply"] = client.complete(state["model"], history)
    except Exception as exc:
        # 交给 rollback 节点处理，由 SendPipeline 原样抛出
        state["error"] = exc
        return state
    if _cancelled(state):
        state["error"] = SendCancelledError()
    return state


def commit_node(state: SendState, store: ConversationStore) -> SendState:
    store.append_message(state["chat_id"], Message(role="assistant", content=state["reply"] or ""))
    store.save()
    return state


def rollback_node(state: SendState, store: ConversationStore) -> SendState:
    error = state.get("error")
    try:
        store.remove_last_message(state["chat_id"])
    except ValidationError as exc:
        # 等待回复期间会话已被删除
        logger.warning(
            "rollback_node.chat_gone",
            extra={"extra": {"trace_id": state["trace_id"], "chat_id": state["chat_id"], "code": exc.code}},
        )
        return state
    if store.write_attempts != state.get("writes_at_append", store.write_attempts):
        # 等待期间快照已包含这条用户消息，需要重新落盘
        store.save()
    logger.warning(
        "rollback_node.rolled_back",
        extra={
            "extra": {
                "trace_id": state["trace_id"],
                "chat_id": state["chat_id"],
                "code": getattr(error, "code", type(error).__name__),
            }
        },
    )
    return state


def completion_router(state: SendState) -> str:
    if state.get("error") is not None:
        return "rollback"
    return "commit"


def build_send_graph(store: ConversationStore, client: CompletionClient) -> CompiledStateGraph:
    graph = StateGraph(SendState)
    graph.add_node("append_user", lambda s: append_user_node(s, store))
    graph.add_node("request_completion", lambda s: request_completion_node(s, store, client))
    graph.add_node("commit", lambda s: commit_node(s, store))
    graph.add_node("rollback", lambda s: rollback_node(s, store))
    graph.set_entry_point("append_user")
    graph.add_edge("append_user", "request_completion")
    graph.add_conditional_edges(
        "request_completion",
        completion_router,
        {"commit": "commit", "rollback": "rollback"},
    )
    graph.add_edge("commit", END)
    graph.add_edge("rollback", END)
    return graph.compile()
