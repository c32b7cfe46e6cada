"""Configuration boundary tests."""

from __future__ import annotations

import pytest

from meridian.adapters import BedrockInvokeAdapter
from meridian.config import Config, ModelCapabilities
from meridian.errors import ConfigurationError
from meridian.models import CanonicalMessage, CanonicalRequest, SamplingConfig

pytestmark = pytest.mark.unit

_MISTRAL = "mistral.mistral-large-2402-v1:0"


def test_config_creation() -> None:
    cfg = Config(provider="openai", model="gpt-4o-mini")

    assert cfg.provider == "openai"
    assert cfg.model == "gpt-4o-mini"
    assert cfg.stream_idle_timeout_s is None
    assert cfg.client_cache_ttl_s is None


def test_unknown_provider_raises_clear_error() -> None:
    with pytest.raises(ConfigurationError, match="Unknown provider") as exc:
        Config(provider="cohere", model="command-r")

    assert exc.value.hint is not None
    assert "bedrock_invoke" in exc.value.hint


def test_empty_model_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        Config(provider="anthropic", model="")


def test_models_mapping_is_read_only() -> None:
    cfg = Config(provider="bedrock_mistral", model=_MISTRAL, models={_MISTRAL: ModelCapabilities()})

    with pytest.raises(TypeError):
        cfg.models["other"] = ModelCapabilities()  # type: ignore[index]


def test_env_overrides_fill_unset_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MERIDIAN_ENCODING", "o200k_base")
    monkeypatch.setenv("MERIDIAN_STREAM_IDLE_TIMEOUT_S", "30")
    monkeypatch.setenv("MERIDIAN_CLIENT_CACHE_TTL_S", "900")

    cfg = Config(provider="groq", model="llama-3.3-70b-versatile")

    assert cfg.encoding == "o200k_base"
    assert cfg.stream_idle_timeout_s == 30.0
    assert cfg.client_cache_ttl_s == 900.0


def test_explicit_values_take_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MERIDIAN_STREAM_IDLE_TIMEOUT_S", "30")

    cfg = Config(provider="groq", model="llama-3.3-70b-versatile", stream_idle_timeout_s=5)

    assert cfg.stream_idle_timeout_s == 5


def test_non_numeric_env_value_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MERIDIAN_CLIENT_CACHE_TTL_S", "forever")

    with pytest.raises(ConfigurationError) as exc:
        Config(provider="openai", model="gpt-4o")

    assert exc.value.hint is not None
    assert "MERIDIAN_CLIENT_CACHE_TTL_S" in exc.value.hint


@pytest.mark.parametrize(
    "kwargs",
    [
        {"stream_idle_timeout_s": 0},
        {"stream_idle_timeout_s": -1.0},
        {"client_cache_ttl_s": -5},
    ],
)
def test_invalid_durations_are_rejected(kwargs: dict[str, float]) -> None:
    with pytest.raises(ConfigurationError):
        Config(provider="openai", model="gpt-4o", **kwargs)


def test_invalid_max_output_tokens_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        ModelCapabilities(max_output_tokens=0)


def test_capabilities_drive_the_adapter() -> None:
    cfg = Config(
        provider="bedrock_mistral",
        model=_MISTRAL,
        models={_MISTRAL: ModelCapabilities(native_tool_calls=True, sentinel_tool_calls=False)},
    )

    adapter = cfg.adapter()

    assert isinstance(adapter, BedrockInvokeAdapter)
    assert adapter.name == "bedrock_mistral"
    assert adapter.native_tool_calls is True
    assert adapter.sentinel is None
    assert adapter.unescape_underscores is True


def test_unlisted_model_gets_default_capabilities() -> None:
    cfg = Config(provider="bedrock_invoke", model="meta.llama3-70b-instruct-v1:0")

    assert cfg.capabilities() == ModelCapabilities()
    assert cfg.adapter().sentinel is not None


def test_encoding_precedence() -> None:
    model = "gpt-4o"
    from_config = Config(provider="openai", model=model, encoding="cl100k_base")
    from_model = Config(
        provider="openai",
        model=model,
        encoding="cl100k_base",
        models={model: ModelCapabilities(encoding="p50k_base")},
    )
    default = Config(provider="openai", model=model)

    assert from_config.adapter().encoding == "cl100k_base"
    assert from_model.adapter().encoding == "p50k_base"
    assert default.adapter().encoding == "o200k_base"


def test_max_reply_tokens_prefers_the_request() -> None:
    model = "claude-sonnet-4-5"
    cfg = Config(
        provider="anthropic",
        model=model,
        models={model: ModelCapabilities(max_output_tokens=8192)},
    )
    messages = (CanonicalMessage(role="user", content="hi"),)

    assert cfg.max_reply_tokens(CanonicalRequest(messages=messages)) == 8192
    assert (
        cfg.max_reply_tokens(
            CanonicalRequest(messages=messages, config=SamplingConfig(max_tokens=64))
        )
        == 64
    )


def test_client_cache_honors_configured_ttl() -> None:
    cfg = Config(provider="bedrock", model="anthropic.claude-3-haiku", client_cache_ttl_s=60)

    assert cfg.client_cache().ttl_seconds == 60
