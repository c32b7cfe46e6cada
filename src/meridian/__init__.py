"""Meridian: one canonical response contract across LLM vendors.

Public API:
    - normalize_stream(): Consume a vendor stream into partial events + one response
    - normalize_response(): Assemble a one-shot vendor response
    - StreamAccumulator: The per-stream state machine behind both
    - Config / ModelCapabilities: Provider, model and capability flags
    - classify_error(): Map vendor failures onto the error taxonomy
"""

from __future__ import annotations

import logging

from meridian.accumulator import StreamAccumulator
from meridian.adapters import StreamAdapter, get_adapter
from meridian.classify import classify_error, parse_duration_ms
from meridian.clients import ClientCache
from meridian.config import Config, ModelCapabilities
from meridian.errors import (
    ConfigurationError,
    FatalProviderError,
    MalformedToolPayload,
    MeridianError,
    ProviderError,
    RateLimitError,
    StatusCode,
    StreamAborted,
    StreamUnavailable,
    TransientProviderError,
)
from meridian.finish_reasons import FinishReasonMapper, get_mapper
from meridian.models import (
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResponse,
    Metrics,
    ResponseEvent,
    SamplingConfig,
    ToolCall,
    ToolDefinition,
    Usage,
    UsageSnapshot,
)
from meridian.retry import RetryPolicy, retry_async
from meridian.sentinel import (
    SentinelMarkers,
    SentinelToolCallDetector,
    ToolCallMode,
    render_tool_instructions,
)
from meridian.stream import normalize_response, normalize_stream, stream_completion
from meridian.usage import TiktokenCounter, TokenCounter, count_request_tokens, resolve_usage

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("meridian-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("meridian").addHandler(logging.NullHandler())

__all__ = [
    "CanonicalMessage",
    "CanonicalRequest",
    "CanonicalResponse",
    "ClientCache",
    "Config",
    "ConfigurationError",
    "FatalProviderError",
    "FinishReasonMapper",
    "MalformedToolPayload",
    "MeridianError",
    "Metrics",
    "ModelCapabilities",
    "ProviderError",
    "RateLimitError",
    "ResponseEvent",
    "RetryPolicy",
    "SamplingConfig",
    "SentinelMarkers",
    "SentinelToolCallDetector",
    "StatusCode",
    "StreamAborted",
    "StreamAccumulator",
    "StreamAdapter",
    "StreamUnavailable",
    "TiktokenCounter",
    "TokenCounter",
    "ToolCall",
    "ToolCallMode",
    "ToolDefinition",
    "TransientProviderError",
    "Usage",
    "UsageSnapshot",
    "classify_error",
    "count_request_tokens",
    "get_adapter",
    "get_mapper",
    "normalize_response",
    "normalize_stream",
    "parse_duration_ms",
    "render_tool_instructions",
    "resolve_usage",
    "retry_async",
    "stream_completion",
]
