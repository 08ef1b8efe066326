from nova_core.config.settings import Settings
from nova_core.providers import create_client
from nova_core.providers.anthropic_client import AnthropicClient
from nova_core.providers.registry import ANTHROPIC_CONFIG, available_models


class DummySettings:
    anthropic_api_key = "env-key"
    http_timeout = 1.0
    anthropic_base_url = "https://api.anthropic.com/v1"


def test_create_client_uses_explicit_key():
    client = create_client("user-key", DummySettings())
    assert isinstance(client, AnthropicClient)
    assert client.api_key == "user-key"


def test_create_client_falls_back_to_settings_key():
    client = create_client(None, DummySettings())
    assert client.api_key == "env-key"


def test_registry_defaults():
    assert ANTHROPIC_CONFIG.max_tokens_for("claude-sonnet-4-5-20250929") == 4096
    assert ANTHROPIC_CONFIG.max_tokens_for("claude-3-5-haiku-20241022") == 8192
    assert ANTHROPIC_CONFIG.max_tokens_for("some-future-model") == ANTHROPIC_CONFIG.default_max_tokens
    assert available_models()[0].model_id == "claude-sonnet-4-5-20250929"


def test_settings_leave_max_tokens_to_model_table(monkeypatch):
    monkeypatch.delenv("MAX_OUTPUT_TOKENS", raising=False)
    assert Settings().max_output_tokens is None
    assert Settings(max_output_tokens=2048).max_output_tokens == 2048
