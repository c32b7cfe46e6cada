"""Anthropic Messages adapter.

The stream is a sequence of typed events. Usage is split across two of them:
input tokens arrive with ``message_start``, output tokens with
``message_delta``. The engine merges the snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any

from meridian.adapters.base import ToolCallFragment, VendorDelta, int_or_none
from meridian.finish_reasons import ANTHROPIC, FinishReasonMapper
from meridian.models import ToolCall, UsageSnapshot, new_id

if TYPE_CHECKING:
    from meridian.sentinel import SentinelMarkers


def _event_type(record: Any) -> str | None:
    value = getattr(record, "type", None)
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class AnthropicAdapter:
    """Reads ``RawMessageStreamEvent`` objects and ``Message`` responses."""

    name: str = "anthropic"
    finish_reasons: FinishReasonMapper = ANTHROPIC
    encoding: str = "cl100k_base"
    sentinel: SentinelMarkers | None = None

    def decode(self, event: Any) -> Any:
        return event

    def normalize_text(self, text: str) -> str:
        return text

    def escape_tail(self, text: str) -> int:
        return 0

    def extract_text_delta(self, record: Any) -> str | None:
        kind = _event_type(record)
        if kind == "content_block_delta":
            delta = getattr(record, "delta", None)
            if getattr(delta, "type", None) == "text_delta":
                text = getattr(delta, "text", None)
                return text if isinstance(text, str) and text else None
        elif kind == "content_block_start":
            block = getattr(record, "content_block", None)
            if getattr(block, "type", None) == "text":
                text = getattr(block, "text", None)
                return text if isinstance(text, str) and text else None
        return None

    def extract_tool_call_fragments(self, record: Any) -> tuple[ToolCallFragment, ...]:
        kind = _event_type(record)
        index = int_or_none(getattr(record, "index", None))
        if index is None:
            return ()
        if kind == "content_block_start":
            block = getattr(record, "content_block", None)
            if getattr(block, "type", None) == "tool_use":
                return (
                    ToolCallFragment(
                        index=index,
                        id=getattr(block, "id", None),
                        name=getattr(block, "name", None),
                    ),
                )
        elif kind == "content_block_delta":
            delta = getattr(record, "delta", None)
            if getattr(delta, "type", None) == "input_json_delta":
                partial = getattr(delta, "partial_json", None) or ""
                return (ToolCallFragment(index=index, arguments=partial),)
        return ()

    def extract_tool_call_block(self, record: Any) -> tuple[ToolCall, ...] | None:
        _ = record
        return None

    def extract_usage(self, record: Any) -> UsageSnapshot | None:
        kind = _event_type(record)
        if kind == "message_start":
            usage = getattr(getattr(record, "message", None), "usage", None)
            if usage is None:
                return None
            return UsageSnapshot(prompt=int_or_none(getattr(usage, "input_tokens", None)))
        if kind == "message_delta":
            usage = getattr(record, "usage", None)
            if usage is None:
                return None
            return UsageSnapshot(
                prompt=int_or_none(getattr(usage, "input_tokens", None)),
                completion=int_or_none(getattr(usage, "output_tokens", None)),
            )
        return None

    def extract_stop_reason(self, record: Any) -> Any:
        if _event_type(record) == "message_delta":
            return getattr(getattr(record, "delta", None), "stop_reason", None)
        return None

    def extract_response_id(self, record: Any) -> str | None:
        if _event_type(record) == "message_start":
            response_id = getattr(getattr(record, "message", None), "id", None)
            return response_id if isinstance(response_id, str) and response_id else None
        return None

    def parse_response(self, response: Any) -> VendorDelta:
        """Reduce a ``Message`` to one delta; text blocks join with no separator."""
        text_parts: list[str] = []
        calls: list[ToolCall] = []
        for block in getattr(response, "content", None) or ():
            block_type = getattr(block, "type", None)
            if block_type == "text":
                text_parts.append(getattr(block, "text", "") or "")
            elif block_type == "tool_use":
                calls.append(
                    ToolCall(
                        id=getattr(block, "id", None) or new_id(),
                        name=getattr(block, "name", "") or "",
                        arguments=json.dumps(getattr(block, "input", None) or {}),
                    )
                )

        usage_raw = getattr(response, "usage", None)
        usage = None
        if usage_raw is not None:
            usage = UsageSnapshot(
                prompt=int_or_none(getattr(usage_raw, "input_tokens", None)),
                completion=int_or_none(getattr(usage_raw, "output_tokens", None)),
            )
        response_id = getattr(response, "id", None)
        return VendorDelta(
            text="".join(text_parts) if text_parts else None,
            tool_call_block=tuple(calls) or None,
            usage=usage,
            stop_reason=getattr(response, "stop_reason", None),
            response_id=response_id if isinstance(response_id, str) else None,
        )
