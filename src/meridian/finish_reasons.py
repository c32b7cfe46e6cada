"""Per-vendor stop/finish reason tables.

Each table lists every value of the vendor's declared enumeration explicitly.
Only protocols without any reason field, where silence means the model simply
finished, declare ``when_absent="stop"``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from meridian.models import FinishReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinishReasonMapper:
    """Total lookup from one vendor's stop reasons to the canonical set."""

    vendor: str
    table: Mapping[str, FinishReason]
    when_absent: FinishReason = "unspecified"
    _warned: set[str] = field(default_factory=set, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Freeze the table and index it case-insensitively."""
        frozen = MappingProxyType({k.lower(): v for k, v in self.table.items()})
        object.__setattr__(self, "table", frozen)

    def map(self, value: Any) -> FinishReason | None:
        """Map a vendor value; ``None`` when the vendor reported nothing.

        Values outside the declared enumeration map to ``"unspecified"``.
        """
        if value is None:
            return None
        raw = getattr(value, "value", value)
        key = str(raw).lower()
        if not key:
            return None
        mapped = self.table.get(key)
        if mapped is None:
            if key not in self._warned:
                self._warned.add(key)
                logger.warning(
                    "Unknown %s stop reason %r; reporting 'unspecified'",
                    self.vendor,
                    raw,
                )
            return "unspecified"
        return mapped

    def resolve(self, value: Any, *, has_tool_calls: bool) -> FinishReason:
        """Return the terminal finish reason for a completed exchange."""
        mapped = self.map(value)
        if mapped is not None:
            return mapped
        if has_tool_calls:
            return "tool_calls"
        return self.when_absent


OPENAI = FinishReasonMapper(
    vendor="openai",
    table={
        "stop": "stop",
        "length": "length",
        "tool_calls": "tool_calls",
        "content_filter": "content_filter",
        "function_call": "function_call",
    },
)

GROQ = FinishReasonMapper(
    vendor="groq",
    table={
        "stop": "stop",
        "length": "length",
        "tool_calls": "tool_calls",
        "content_filter": "content_filter",
        "function_call": "function_call",
    },
)

ANTHROPIC = FinishReasonMapper(
    vendor="anthropic",
    table={
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "length",
        "model_context_window_exceeded": "length",
        "tool_use": "tool_calls",
        "refusal": "content_filter",
        "pause_turn": "unspecified",
    },
)

BEDROCK = FinishReasonMapper(
    vendor="bedrock",
    table={
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "length",
        "model_context_window_exceeded": "length",
        "tool_use": "tool_calls",
        "content_filtered": "content_filter",
        "guardrail_intervened": "guardrail",
    },
)

# InvokeModel bodies for prompt-templated models carry no reason on most
# chunks; a stream that simply ends is a normal completion.
BEDROCK_INVOKE = FinishReasonMapper(
    vendor="bedrock_invoke",
    table={
        "stop": "stop",
        "length": "length",
        "tool_calls": "tool_calls",
    },
    when_absent="stop",
)

GEMINI = FinishReasonMapper(
    vendor="gemini",
    table={
        "finish_reason_unspecified": "unspecified",
        "stop": "stop",
        "max_tokens": "length",
        "safety": "content_filter",
        "recitation": "content_filter",
        "other": "content_filter",
        "blocklist": "content_filter",
        "prohibited_content": "content_filter",
        "spii": "content_filter",
        "image_safety": "content_filter",
        "image_prohibited_content": "content_filter",
        "image_recitation": "content_filter",
        "image_other": "content_filter",
        "no_image": "unspecified",
        "language": "unspecified",
        "malformed_function_call": "unspecified",
        "unexpected_tool_call": "unspecified",
        "too_many_tool_calls": "unspecified",
    },
)

MAPPERS: Mapping[str, FinishReasonMapper] = MappingProxyType(
    {
        mapper.vendor: mapper
        for mapper in (OPENAI, GROQ, ANTHROPIC, BEDROCK, BEDROCK_INVOKE, GEMINI)
    }
)


def get_mapper(vendor: str) -> FinishReasonMapper:
    """Return the finish-reason mapper registered for *vendor*."""
    try:
        return MAPPERS[vendor]
    except KeyError:
        raise KeyError(f"No finish-reason table for vendor {vendor!r}") from None
