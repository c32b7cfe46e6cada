"""Configuration: provider, model and explicit per-model capability flags."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import os
from types import MappingProxyType
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from meridian.adapters import PROVIDERS, get_adapter
from meridian.clients import ClientCache
from meridian.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from meridian.adapters.base import StreamAdapter
    from meridian.models import CanonicalRequest

load_dotenv()

_ENCODING_ENV = "MERIDIAN_ENCODING"
_IDLE_TIMEOUT_ENV = "MERIDIAN_STREAM_IDLE_TIMEOUT_S"
_CACHE_TTL_ENV = "MERIDIAN_CLIENT_CACHE_TTL_S"


@dataclass(frozen=True)
class ModelCapabilities:
    """What one model can do, declared in configuration rather than inferred.

    ``sentinel_tool_calls`` left as ``None`` keeps the provider's default
    (on for Bedrock InvokeModel, off elsewhere).
    """

    native_tool_calls: bool = False
    sentinel_tool_calls: bool | None = None
    #: Tokenizer encoding for the usage fallback; ``None`` keeps the provider's.
    encoding: str | None = None
    max_output_tokens: int | None = None

    def __post_init__(self) -> None:
        """Validate the output token limit."""
        if self.max_output_tokens is not None and self.max_output_tokens < 1:
            raise ConfigurationError(
                f"max_output_tokens must be >= 1, got {self.max_output_tokens}",
                hint="Leave it as None when the model has no configured limit.",
            )


def _env_seconds(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number of seconds, got {raw!r}",
            hint=f"Unset {name} or set it to a value such as '30'.",
        ) from None


@dataclass(frozen=True)
class Config:
    """Immutable configuration for one provider/model pair.

    Unset optional fields are resolved from ``MERIDIAN_*`` environment
    variables (a ``.env`` file is loaded at import).

    Example:
        config = Config(
            provider="bedrock_mistral",
            model="mistral.mistral-large-2402-v1:0",
            models={"mistral.mistral-large-2402-v1:0": ModelCapabilities(native_tool_calls=True)},
        )
        adapter = config.adapter()
    """

    provider: str
    model: str
    models: Mapping[str, ModelCapabilities] = field(default_factory=dict)
    #: Auto-resolved from ``MERIDIAN_ENCODING`` when *None*.
    encoding: str | None = None
    #: Auto-resolved from ``MERIDIAN_STREAM_IDLE_TIMEOUT_S`` when *None*.
    stream_idle_timeout_s: float | None = None
    #: Auto-resolved from ``MERIDIAN_CLIENT_CACHE_TTL_S`` when *None*.
    client_cache_ttl_s: float | None = None

    def __post_init__(self) -> None:
        """Resolve environment overrides and validate."""
        if self.provider not in PROVIDERS:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint=f"Supported providers: {', '.join(PROVIDERS)}",
            )
        if not self.model:
            raise ConfigurationError(
                "model must be a non-empty string",
                hint="Pass the vendor model id, e.g. Config(provider='openai', model='gpt-4o').",
            )
        object.__setattr__(self, "models", MappingProxyType(dict(self.models)))

        if self.encoding is None:
            env_encoding = os.environ.get(_ENCODING_ENV)
            if env_encoding:
                object.__setattr__(self, "encoding", env_encoding)
        if self.stream_idle_timeout_s is None:
            object.__setattr__(self, "stream_idle_timeout_s", _env_seconds(_IDLE_TIMEOUT_ENV))
        if self.client_cache_ttl_s is None:
            object.__setattr__(self, "client_cache_ttl_s", _env_seconds(_CACHE_TTL_ENV))

        if self.stream_idle_timeout_s is not None and self.stream_idle_timeout_s <= 0:
            raise ConfigurationError(
                f"stream_idle_timeout_s must be > 0, got {self.stream_idle_timeout_s}",
                hint="Use None to wait for vendor events without a bound.",
            )
        if self.client_cache_ttl_s is not None and self.client_cache_ttl_s < 0:
            raise ConfigurationError(
                f"client_cache_ttl_s must be >= 0, got {self.client_cache_ttl_s}",
                hint="Use None to keep cached clients for the life of the process.",
            )

    def capabilities(self, model: str | None = None) -> ModelCapabilities:
        """Return the flags configured for *model* (default: this config's model)."""
        return self.models.get(model or self.model, ModelCapabilities())

    def max_reply_tokens(self, request: CanonicalRequest) -> int | None:
        """Reply token budget: the request's ``max_tokens``, else the model limit."""
        if request.config.max_tokens is not None:
            return request.config.max_tokens
        return self.capabilities().max_output_tokens

    def adapter(self) -> StreamAdapter:
        """Build the vendor adapter for this provider and model."""
        capabilities = self.capabilities()
        adapter = get_adapter(self.provider, capabilities)
        if capabilities.encoding is None and self.encoding is not None:
            adapter = replace(adapter, encoding=self.encoding)  # type: ignore[type-var]
        return adapter

    def client_cache(self) -> ClientCache[object]:
        """Create a client cache honoring ``client_cache_ttl_s``."""
        return ClientCache(ttl_seconds=self.client_cache_ttl_s)
