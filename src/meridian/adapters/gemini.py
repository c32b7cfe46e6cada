"""Google Gemini adapter (``google-genai`` ``GenerateContentResponse`` chunks).

Gemini delivers each function call whole, in one part, usually without an id.
Every call becomes a complete fragment with a generated id; its position among
the chunk's parts is its slot index.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any

from meridian.adapters.base import ToolCallFragment, VendorDelta, int_or_none
from meridian.finish_reasons import GEMINI, FinishReasonMapper
from meridian.models import ToolCall, UsageSnapshot, new_id

if TYPE_CHECKING:
    from meridian.sentinel import SentinelMarkers


def _candidate(record: Any) -> Any:
    candidates = getattr(record, "candidates", None)
    if not candidates:
        return None
    return candidates[0]


def _parts(record: Any) -> list[Any]:
    content = getattr(_candidate(record), "content", None)
    return list(getattr(content, "parts", None) or ())


def _call_id(function_call: Any) -> str:
    call_id = getattr(function_call, "id", None)
    return str(call_id) if call_id else f"call_{new_id().replace('-', '')[:8]}"


@dataclass(frozen=True)
class GeminiAdapter:
    """Reads ``generate_content_stream`` chunks and ``generate_content`` responses."""

    name: str = "gemini"
    finish_reasons: FinishReasonMapper = GEMINI
    encoding: str = "cl100k_base"
    sentinel: SentinelMarkers | None = None

    def decode(self, event: Any) -> Any:
        return event

    def normalize_text(self, text: str) -> str:
        return text

    def escape_tail(self, text: str) -> int:
        return 0

    def extract_text_delta(self, record: Any) -> str | None:
        pieces = [
            part.text
            for part in _parts(record)
            if isinstance(getattr(part, "text", None), str)
            and not getattr(part, "thought", False)
        ]
        text = "".join(pieces)
        return text or None

    def extract_tool_call_fragments(self, record: Any) -> tuple[ToolCallFragment, ...]:
        fragments: list[ToolCallFragment] = []
        for position, part in enumerate(_parts(record)):
            function_call = getattr(part, "function_call", None)
            if function_call is None:
                continue
            fragments.append(
                ToolCallFragment(
                    index=position,
                    id=_call_id(function_call),
                    name=str(getattr(function_call, "name", "") or ""),
                    arguments=json.dumps(getattr(function_call, "args", None) or {}),
                )
            )
        return tuple(fragments)

    def extract_tool_call_block(self, record: Any) -> tuple[ToolCall, ...] | None:
        _ = record
        return None

    def extract_usage(self, record: Any) -> UsageSnapshot | None:
        metadata = getattr(record, "usage_metadata", None)
        if metadata is None:
            return None
        completion = int_or_none(getattr(metadata, "candidates_token_count", None))
        thoughts = int_or_none(getattr(metadata, "thoughts_token_count", None))
        if completion is not None and thoughts:
            # Thinking tokens are billed as output and counted in the total.
            completion += thoughts
        return UsageSnapshot(
            prompt=int_or_none(getattr(metadata, "prompt_token_count", None)),
            completion=completion,
            total=int_or_none(getattr(metadata, "total_token_count", None)),
        )

    def extract_stop_reason(self, record: Any) -> Any:
        return getattr(_candidate(record), "finish_reason", None)

    def extract_response_id(self, record: Any) -> str | None:
        response_id = getattr(record, "response_id", None)
        return response_id if isinstance(response_id, str) and response_id else None

    def parse_response(self, response: Any) -> VendorDelta:
        """Reduce a ``GenerateContentResponse`` to one delta."""
        calls = tuple(
            ToolCall(id=fragment.id or new_id(), name=fragment.name or "", arguments=fragment.arguments)
            for fragment in self.extract_tool_call_fragments(response)
        )
        return VendorDelta(
            text=self.extract_text_delta(response),
            tool_call_block=calls or None,
            usage=self.extract_usage(response),
            stop_reason=self.extract_stop_reason(response),
            response_id=self.extract_response_id(response),
        )
