"""Amazon Bedrock Converse adapter.

``converse_stream`` yields plain dict events keyed by their kind
(``contentBlockStart``, ``contentBlockDelta``, ``messageStop``, ``metadata``).
Content block index 0 is a valid tool-call slot.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any

from meridian.adapters.base import ToolCallFragment, VendorDelta, int_or_none
from meridian.finish_reasons import BEDROCK, FinishReasonMapper
from meridian.models import ToolCall, UsageSnapshot, new_id

if TYPE_CHECKING:
    from meridian.sentinel import SentinelMarkers


def _section(record: Any, key: str) -> dict[str, Any]:
    if not isinstance(record, dict):
        return {}
    value = record.get(key)
    return value if isinstance(value, dict) else {}


def _usage(raw: Any) -> UsageSnapshot | None:
    if not isinstance(raw, dict):
        return None
    return UsageSnapshot(
        prompt=int_or_none(raw.get("inputTokens")),
        completion=int_or_none(raw.get("outputTokens")),
        total=int_or_none(raw.get("totalTokens")),
    )


def _tool_input(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


@dataclass(frozen=True)
class BedrockConverseAdapter:
    """Reads Converse / ConverseStream payloads as returned by boto3."""

    name: str = "bedrock"
    finish_reasons: FinishReasonMapper = BEDROCK
    encoding: str = "cl100k_base"
    sentinel: SentinelMarkers | None = None

    def decode(self, event: Any) -> Any:
        return event

    def normalize_text(self, text: str) -> str:
        return text

    def escape_tail(self, text: str) -> int:
        return 0

    def extract_text_delta(self, record: Any) -> str | None:
        delta = _section(record, "contentBlockDelta").get("delta")
        if not isinstance(delta, dict):
            return None
        text = delta.get("text")
        return text if isinstance(text, str) and text else None

    def extract_tool_call_fragments(self, record: Any) -> tuple[ToolCallFragment, ...]:
        start = _section(record, "contentBlockStart")
        if start:
            index = int_or_none(start.get("contentBlockIndex"))
            tool_use = (start.get("start") or {}).get("toolUse")
            if index is not None and isinstance(tool_use, dict):
                return (
                    ToolCallFragment(
                        index=index,
                        id=tool_use.get("toolUseId"),
                        name=tool_use.get("name"),
                    ),
                )
            return ()

        delta = _section(record, "contentBlockDelta")
        index = int_or_none(delta.get("contentBlockIndex"))
        tool_use = (delta.get("delta") or {}).get("toolUse")
        if index is not None and isinstance(tool_use, dict):
            return (ToolCallFragment(index=index, arguments=_tool_input(tool_use.get("input"))),)
        return ()

    def extract_tool_call_block(self, record: Any) -> tuple[ToolCall, ...] | None:
        _ = record
        return None

    def extract_usage(self, record: Any) -> UsageSnapshot | None:
        return _usage(_section(record, "metadata").get("usage"))

    def extract_stop_reason(self, record: Any) -> Any:
        return _section(record, "messageStop").get("stopReason")

    def extract_response_id(self, record: Any) -> str | None:
        _ = record
        return None

    def parse_response(self, response: Any) -> VendorDelta:
        """Reduce a ``converse`` response dict to one delta."""
        message = _section(_section(response, "output"), "message")
        text_parts: list[str] = []
        calls: list[ToolCall] = []
        for block in message.get("content") or ():
            if not isinstance(block, dict):
                continue
            if isinstance(block.get("text"), str):
                text_parts.append(block["text"])
            tool_use = block.get("toolUse")
            if isinstance(tool_use, dict):
                calls.append(
                    ToolCall(
                        id=tool_use.get("toolUseId") or new_id(),
                        name=tool_use.get("name") or "",
                        arguments=_tool_input(tool_use.get("input")),
                    )
                )
        request_id = _section(response, "ResponseMetadata").get("RequestId")
        return VendorDelta(
            text="".join(text_parts) if text_parts else None,
            tool_call_block=tuple(calls) or None,
            usage=_usage(response.get("usage") if isinstance(response, dict) else None),
            stop_reason=response.get("stopReason") if isinstance(response, dict) else None,
            response_id=request_id if isinstance(request_id, str) else None,
        )
