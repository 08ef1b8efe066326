"""测试 SendPipeline 的乐观更新、提交与回滚。"""

import threading

import pytest

from nova_core.domain.conversation import ConversationStore
from nova_core.domain.exceptions import (
    ApiError,
    BusyError,
    SendCancelledError,
    TransportError,
    ValidationError,
)
from nova_core.domain.models import Message
from nova_core.flows.send_pipeline import SendPipeline


class FakeClient:
    """模拟的 Completion 客户端。"""
    name = "fake"

    def __init__(self, reply="Hi there", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def complete(self, model, messages):
        self.calls.append((model, list(messages)))
        if self.error is not None:
            raise self.error
        return self.reply


class RecordingStorage:
    def __init__(self):
        self.writes = []

    def read_current(self):
        return None

    def read_legacy(self):
        return None

    def write_current(self, snapshot):
        self.writes.append(snapshot)


def test_send_success_commits_both_messages():
    storage = RecordingStorage()
    store = ConversationStore.open(storage)
    cid = store.create_chat()
    client = FakeClient()
    pipeline = SendPipeline(store, client, model="claude-sonnet-4-5-20250929")

    reply = pipeline.send(cid, "Hello")

    chat = store.find_chat(cid)
    assert reply == "Hi there"
    assert chat.messages == [Message(role="user", content="Hello"), Message(role="assistant", content="Hi there")]
    assert chat.title == "Hello"
    assert client.calls == [("claude-sonnet-4-5-20250929", [Message(role="user", content="Hello")])]
    assert storage.writes[-1]["chatsWithoutProject"][0]["messages"][-1] == {"role": "assistant", "content": "Hi there"}
    assert pipeline.state == "idle"


def test_send_sends_full_history():
    store = ConversationStore()
    cid = store.create_chat()
    client = FakeClient(reply="second reply")
    pipeline = SendPipeline(store, client, model="m")
    pipeline.send(cid, "first")
    pipeline.send(cid, "  second  ")
    _, history = client.calls[-1]
    assert [m.content for m in history] == ["first", "second reply", "second"]


@pytest.mark.parametrize("error", [ApiError(status_code=401), TransportError(cause=OSError("reset"))])
def test_send_failure_rolls_back_user_message(error):
    storage = RecordingStorage()
    store = ConversationStore.open(storage)
    cid = store.create_chat()
    writes_before = len(storage.writes)
    pipeline = SendPipeline(store, FakeClient(error=error), model="m")

    with pytest.raises(type(error)) as exc:
        pipeline.send(cid, "Hello")

    assert exc.value is error
    chat = store.find_chat(cid)
    assert chat.messages == []
    # 标题不随回滚撤销
    assert chat.title == "Hello"
    assert len(storage.writes) == writes_before
    assert pipeline.state == "idle"


def test_send_failure_leaves_earlier_messages():
    store = ConversationStore()
    cid = store.create_chat()
    client = FakeClient()
    pipeline = SendPipeline(store, client, model="m")
    pipeline.send(cid, "Hello")
    client.error = ApiError(status_code=500)
    with pytest.raises(ApiError):
        pipeline.send(cid, "again")
    assert [m.content for m in store.find_chat(cid).messages] == ["Hello", "Hi there"]


def test_unexpected_fault_also_rolls_back_and_releases_guard():
    store = ConversationStore()
    cid = store.create_chat()
    pipeline = SendPipeline(store, FakeClient(error=RuntimeError("bug")), model="m")
    with pytest.raises(RuntimeError):
        pipeline.send(cid, "Hello")
    assert store.find_chat(cid).messages == []
    assert pipeline.state == "idle"


def test_send_validation():
    store = ConversationStore()
    cid = store.create_chat()
    client = FakeClient()
    pipeline = SendPipeline(store, client, model="m")
    with pytest.raises(ValidationError) as exc:
        pipeline.send(cid, "   ")
    assert exc.value.code == "EMPTY_TEXT"
    with pytest.raises(ValidationError) as exc:
        pipeline.send("c-missing", "Hello")
    assert exc.value.code == "CHAT_NOT_FOUND"
    assert client.calls == []


def test_second_send_while_awaiting_reply_is_busy():
    store = ConversationStore()
    first = store.create_chat()
    second = store.create_chat()
    outcome = {}

    class ReentrantClient:
        name = "reentrant"

        def complete(self, model, messages):
            outcome["state"] = pipeline.state
            with pytest.raises(BusyError):
                pipeline.send(second, "queued?")
            outcome["second_messages"] = list(store.find_chat(second).messages)
            return "ok"

    pipeline = SendPipeline(store, ReentrantClient(), model="m")
    assert pipeline.send(first, "Hello") == "ok"
    assert outcome["state"] == "awaiting_reply"
    assert outcome["second_messages"] == []
    assert store.find_chat(second).messages == []


def test_busy_across_threads_and_reads_not_blocked():
    store = ConversationStore()
    cid = store.create_chat()
    other = store.create_chat()
    started = threading.Event()
    release = threading.Event()

    class SlowClient:
        name = "slow"

        def complete(self, model, messages):
            started.set()
            release.wait(5)
            return "done"

    pipeline = SendPipeline(store, SlowClient(), model="m")
    worker = threading.Thread(target=pipeline.send, args=(cid, "Hello"))
    worker.start()
    assert started.wait(5)

    # 在途期间读取不受影响，且乐观更新已可见
    assert [m.content for m in store.find_chat(cid).messages] == ["Hello"]
    with pytest.raises(BusyError):
        pipeline.send(other, "Hi")
    assert store.find_chat(other).messages == []

    release.set()
    worker.join(5)
    assert [m.content for m in store.find_chat(cid).messages] == ["Hello", "done"]
    assert pipeline.state == "idle"


def test_cancelled_send_rolls_back():
    store = ConversationStore()
    cid = store.create_chat()
    cancel = threading.Event()

    class CancellingClient:
        name = "cancelling"

        def complete(self, model, messages):
            cancel.set()
            return "late reply"

    pipeline = SendPipeline(store, CancellingClient(), model="m")
    with pytest.raises(SendCancelledError):
        pipeline.send(cid, "Hello", cancel_event=cancel)
    assert store.find_chat(cid).messages == []


def test_cancel_before_request_skips_client():
    store = ConversationStore()
    cid = store.create_chat()
    cancel = threading.Event()
    cancel.set()
    client = FakeClient()
    pipeline = SendPipeline(store, client, model="m")
    with pytest.raises(SendCancelledError):
        pipeline.send(cid, "Hello", cancel_event=cancel)
    assert client.calls == []
    assert store.find_chat(cid).messages == []


def test_chat_deleted_while_awaiting_failed_reply():
    store = ConversationStore()
    cid = store.create_chat()

    class DeletingClient:
        name = "deleting"

        def complete(self, model, messages):
            store.delete_chat(cid)
            raise ApiError(status_code=503)

    pipeline = SendPipeline(store, DeletingClient(), model="m")
    with pytest.raises(ApiError):
        pipeline.send(cid, "Hello")
    assert store.find_chat(cid) is None
    assert pipeline.state == "idle"


def test_failed_send_resaves_after_structural_write_during_request():
    storage = RecordingStorage()
    store = ConversationStore.open(storage)
    cid = store.create_chat()
    started = threading.Event()
    release = threading.Event()

    class BlockingFailingClient:
        name = "blocking"

        def complete(self, model, messages):
            started.set()
            release.wait(5)
            raise ApiError(status_code=401)

    pipeline = SendPipeline(store, BlockingFailingClient(), model="m")
    errors = []

    def run():
        try:
            pipeline.send(cid, "Hello")
        except ApiError as exc:
            errors.append(exc)

    worker = threading.Thread(target=run)
    worker.start()
    assert started.wait(5)

    # 等待回复期间的结构性操作会把乐观追加的用户消息写进快照
    store.create_project("Work")
    assert storage.writes[-1]["chatsWithoutProject"][0]["messages"] == [{"role": "user", "content": "Hello"}]

    release.set()
    worker.join(5)
    assert len(errors) == 1
    assert store.find_chat(cid).messages == []
    assert storage.writes[-1]["chatsWithoutProject"][0]["messages"] == []
    assert storage.writes[-1]["projects"][0]["name"] == "Work"
    assert pipeline.state == "idle"
