"""OpenAI Chat Completions adapter (and the OpenAI-compatible Groq variant)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from meridian.adapters.base import ToolCallFragment, VendorDelta, first_choice, int_or_none
from meridian.finish_reasons import GROQ, OPENAI, FinishReasonMapper
from meridian.models import ToolCall, UsageSnapshot, new_id

if TYPE_CHECKING:
    from meridian.sentinel import SentinelMarkers


def _usage(raw: Any) -> UsageSnapshot | None:
    if raw is None:
        return None
    return UsageSnapshot(
        prompt=int_or_none(getattr(raw, "prompt_tokens", None)),
        completion=int_or_none(getattr(raw, "completion_tokens", None)),
        total=int_or_none(getattr(raw, "total_tokens", None)),
    )


@dataclass(frozen=True)
class OpenAIChatAdapter:
    """Reads ``ChatCompletionChunk`` / ``ChatCompletion`` objects.

    Streaming requests should set ``stream_options={"include_usage": True}``;
    the usage then arrives on a final chunk with no choices.
    """

    name: str = "openai"
    finish_reasons: FinishReasonMapper = OPENAI
    encoding: str = "o200k_base"
    sentinel: SentinelMarkers | None = None

    def decode(self, event: Any) -> Any:
        return event

    def normalize_text(self, text: str) -> str:
        return text

    def escape_tail(self, text: str) -> int:
        return 0

    def extract_text_delta(self, record: Any) -> str | None:
        delta = getattr(first_choice(record), "delta", None)
        content = getattr(delta, "content", None)
        return content if isinstance(content, str) and content else None

    def extract_tool_call_fragments(self, record: Any) -> tuple[ToolCallFragment, ...]:
        delta = getattr(first_choice(record), "delta", None)
        fragments: list[ToolCallFragment] = []
        for call in getattr(delta, "tool_calls", None) or ():
            function = getattr(call, "function", None)
            fragments.append(
                ToolCallFragment(
                    index=int(getattr(call, "index", 0) or 0),
                    id=getattr(call, "id", None),
                    name=getattr(function, "name", None),
                    arguments=getattr(function, "arguments", None) or "",
                )
            )
        return tuple(fragments)

    def extract_tool_call_block(self, record: Any) -> tuple[ToolCall, ...] | None:
        _ = record
        return None

    def extract_usage(self, record: Any) -> UsageSnapshot | None:
        return _usage(getattr(record, "usage", None))

    def extract_stop_reason(self, record: Any) -> Any:
        return getattr(first_choice(record), "finish_reason", None)

    def extract_response_id(self, record: Any) -> str | None:
        response_id = getattr(record, "id", None)
        return response_id if isinstance(response_id, str) and response_id else None

    def parse_response(self, response: Any) -> VendorDelta:
        """Reduce a ``ChatCompletion`` to one delta."""
        choice = first_choice(response)
        message = getattr(choice, "message", None)
        content = getattr(message, "content", None)
        calls = tuple(
            ToolCall(
                id=getattr(call, "id", None) or new_id(),
                name=getattr(call.function, "name", "") or "",
                arguments=getattr(call.function, "arguments", "") or "",
            )
            for call in getattr(message, "tool_calls", None) or ()
        )
        return VendorDelta(
            text=content if isinstance(content, str) else None,
            tool_call_block=calls or None,
            usage=self.extract_usage(response),
            stop_reason=getattr(choice, "finish_reason", None),
            response_id=self.extract_response_id(response),
        )


@dataclass(frozen=True)
class GroqAdapter(OpenAIChatAdapter):
    """Groq chunks: OpenAI-shaped, with streaming usage under ``x_groq.usage``."""

    name: str = "groq"
    finish_reasons: FinishReasonMapper = GROQ
    encoding: str = "cl100k_base"

    def extract_usage(self, record: Any) -> UsageSnapshot | None:
        x_groq = getattr(record, "x_groq", None)
        usage = _usage(getattr(x_groq, "usage", None))
        if usage is not None:
            return usage
        return _usage(getattr(record, "usage", None))
