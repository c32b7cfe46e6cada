"""Vendor adapters."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Any

from meridian.errors import ConfigurationError
from meridian.sentinel import DEFAULT_MARKERS

from .anthropic import AnthropicAdapter
from .base import StreamAdapter, ToolCallFragment, VendorDelta, read_event
from .bedrock import BedrockConverseAdapter
from .bedrock_invoke import BedrockInvokeAdapter
from .gemini import GeminiAdapter
from .openai import GroqAdapter, OpenAIChatAdapter

if TYPE_CHECKING:
    from meridian.config import ModelCapabilities

_ADAPTERS: dict[str, Any] = {
    "openai": OpenAIChatAdapter,
    "groq": GroqAdapter,
    "anthropic": AnthropicAdapter,
    "bedrock": BedrockConverseAdapter,
    "bedrock_invoke": BedrockInvokeAdapter,
    "bedrock_mistral": lambda: BedrockInvokeAdapter(
        name="bedrock_mistral", unescape_underscores=True
    ),
    "gemini": GeminiAdapter,
}

PROVIDERS: tuple[str, ...] = tuple(_ADAPTERS)


def get_adapter(
    provider: str, capabilities: ModelCapabilities | None = None
) -> StreamAdapter:
    """Build the adapter for *provider*, specialized by the model's flags."""
    factory = _ADAPTERS.get(provider)
    if factory is None:
        raise ConfigurationError(
            f"Unknown provider: {provider!r}",
            hint=f"Supported providers: {', '.join(PROVIDERS)}",
        )
    adapter = factory()
    if capabilities is None:
        return adapter

    changes: dict[str, Any] = {}
    if capabilities.encoding is not None:
        changes["encoding"] = capabilities.encoding
    if capabilities.sentinel_tool_calls is not None:
        changes["sentinel"] = DEFAULT_MARKERS if capabilities.sentinel_tool_calls else None
    if capabilities.native_tool_calls and isinstance(adapter, BedrockInvokeAdapter):
        changes["native_tool_calls"] = True
    return replace(adapter, **changes) if changes else adapter


__all__ = [
    "PROVIDERS",
    "AnthropicAdapter",
    "BedrockConverseAdapter",
    "BedrockInvokeAdapter",
    "GeminiAdapter",
    "GroqAdapter",
    "OpenAIChatAdapter",
    "StreamAdapter",
    "ToolCallFragment",
    "VendorDelta",
    "get_adapter",
    "read_event",
]
