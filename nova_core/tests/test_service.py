"""测试 ChatApp 组装与用户设置读写。"""

import json
import tempfile
from pathlib import Path

import pytest

from nova_core.api.service import ChatApp
from nova_core.config.settings import Settings
from nova_core.config.user_settings import UserSettings, load_user_settings, save_user_settings
from nova_core.domain.exceptions import ValidationError
from nova_core.domain.models import Message


class FakeClient:
    name = "fake"

    def __init__(self):
        self.api_key = None
        self.models = []

    def complete(self, model, messages):
        self.models.append(model)
        return "Hi there"


def _settings(d: str) -> Settings:
    return Settings(storage_root=str(Path(d)), log_dir=str(Path(d) / "logs"))


@pytest.fixture(autouse=True)
def _no_env_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)


def test_user_settings_defaults_when_missing_or_broken():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "settings.json"
        data = load_user_settings(path)
        assert data.api_key == ""
        assert data.max_messages == 50
        path.write_text("{oops", encoding="utf-8")
        assert load_user_settings(path).api_key == ""
        path.write_text(json.dumps({"apiKey": "k", "maxMessages": 0}), encoding="utf-8")
        assert load_user_settings(path).max_messages == 50


def test_user_settings_round_trip_uses_camel_case():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "nested" / "settings.json"
        save_user_settings(UserSettings(api_key="sk-1", model="claude-3-5-haiku-20241022", max_messages=10), path)
        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw == {"apiKey": "sk-1", "model": "claude-3-5-haiku-20241022", "maxMessages": 10}
        assert load_user_settings(path).model == "claude-3-5-haiku-20241022"


def test_app_send_requires_key_without_touching_chat():
    with tempfile.TemporaryDirectory() as d:
        client = FakeClient()
        app = ChatApp(cfg=_settings(d), client=client)
        cid = app.store.create_chat()
        with pytest.raises(ValidationError) as exc:
            app.send(cid, "Hello")
        assert exc.value.code == "MISSING_API_KEY"
        assert app.store.find_chat(cid).messages == []
        assert client.models == []


def test_app_full_cycle_persists_across_restart():
    with tempfile.TemporaryDirectory() as d:
        cfg = _settings(d)
        client = FakeClient()
        with ChatApp(cfg=cfg, client=client) as app:
            app.update_settings(api_key="  sk-test  ", model="claude-opus-4-1-20250805", max_messages=1)
            assert client.api_key == "sk-test"
            pid = app.store.create_project("Work")
            cid = app.store.create_chat(pid)
            assert app.send(cid, "Hello") == "Hi there"
            assert client.models == ["claude-opus-4-1-20250805"]
            assert app.visible_messages(cid) == [Message(role="assistant", content="Hi there")]

        reopened = ChatApp(cfg=cfg, client=FakeClient())
        assert reopened.user_settings.api_key == "sk-test"
        assert reopened.pipeline.model == "claude-opus-4-1-20250805"
        chat = reopened.store.get_project(pid).chats[0]
        assert chat.title == "Hello"
        assert len(chat.messages) == 2


def test_update_settings_rejects_invalid_values():
    with tempfile.TemporaryDirectory() as d:
        app = ChatApp(cfg=_settings(d), client=FakeClient())
        with pytest.raises(ValidationError):
            app.update_settings(max_messages=0)
        assert app.user_settings.max_messages == 50


def test_app_migrates_legacy_chats_on_start():
    with tempfile.TemporaryDirectory() as d:
        legacy = [{"id": "1", "title": "Old", "messages": [{"role": "user", "content": "hey"}], "createdAt": "x"}]
        (Path(d) / "chats.json").write_text(json.dumps(legacy), encoding="utf-8")
        app = ChatApp(cfg=_settings(d), client=FakeClient())
        assert [c.title for c in app.store.list_unfiled_chats()] == ["Old"]
        assert (Path(d) / "chats_store.json").exists()


def test_available_models_lists_registry_and_keeps_custom_choice():
    with tempfile.TemporaryDirectory() as d:
        app = ChatApp(cfg=_settings(d), client=FakeClient())
        labels = [m.label for m in app.available_models()]
        assert labels == ["Claude Sonnet 4.5", "Claude Opus 4.1", "Claude Haiku 3.5"]

        app.update_settings(model="claude-custom-preview")
        models = app.available_models()
        assert models[-1].model_id == "claude-custom-preview"
        assert models[-1].label == "claude-custom-preview"
        assert len(models) == 4
