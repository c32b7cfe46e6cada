"""Adapter protocol: the four questions every vendor record must answer.

An adapter is a small value composed into the engine, not a base class. The
engine asks each decoded vendor record for an optional text delta, tool-call
fragments, a usage snapshot and a stop reason (plus an id and, for protocols
that have one, an early self-contained tool-call block).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from meridian.finish_reasons import FinishReasonMapper
    from meridian.models import ToolCall, UsageSnapshot
    from meridian.sentinel import SentinelMarkers


@dataclass(frozen=True)
class ToolCallFragment:
    """A piece of one tool-call slot; ``index`` orders the slots."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass(frozen=True)
class VendorDelta:
    """One vendor record reduced to the answers the engine needs."""

    text: str | None = None
    tool_call_fragments: tuple[ToolCallFragment, ...] = ()
    tool_call_block: tuple[ToolCall, ...] | None = None
    usage: UsageSnapshot | None = None
    stop_reason: Any = None
    response_id: str | None = None


@runtime_checkable
class StreamAdapter(Protocol):
    """Per-vendor extraction hooks plus the vendor's static traits."""

    name: str
    finish_reasons: FinishReasonMapper
    #: Tokenizer encoding used when usage has to be counted locally.
    encoding: str
    #: Markers for embedded tool calls; None when the vendor has native tool calls only.
    sentinel: SentinelMarkers | None

    def decode(self, event: Any) -> Any:
        """Turn a raw stream item into the record the extractors read."""
        ...

    def normalize_text(self, text: str) -> str:
        """Undo vendor escaping; used for sentinel matching only."""
        ...

    def escape_tail(self, text: str) -> int:
        """Count trailing raw characters that may open an escape not yet complete."""
        ...

    def extract_text_delta(self, record: Any) -> str | None: ...  # noqa: D102

    def extract_tool_call_fragments(  # noqa: D102
        self, record: Any
    ) -> tuple[ToolCallFragment, ...]: ...

    def extract_tool_call_block(  # noqa: D102
        self, record: Any
    ) -> tuple[ToolCall, ...] | None: ...

    def extract_usage(self, record: Any) -> UsageSnapshot | None: ...  # noqa: D102

    def extract_stop_reason(self, record: Any) -> Any: ...  # noqa: D102

    def extract_response_id(self, record: Any) -> str | None: ...  # noqa: D102

    def parse_response(self, response: Any) -> VendorDelta:
        """Reduce a complete non-streaming response to one delta."""
        ...


def read_event(adapter: StreamAdapter, event: Any) -> VendorDelta:
    """Decode *event* once and ask the adapter every question about it."""
    record = adapter.decode(event)
    return VendorDelta(
        text=adapter.extract_text_delta(record),
        tool_call_fragments=adapter.extract_tool_call_fragments(record),
        tool_call_block=adapter.extract_tool_call_block(record),
        usage=adapter.extract_usage(record),
        stop_reason=adapter.extract_stop_reason(record),
        response_id=adapter.extract_response_id(record),
    )


def first_choice(record: Any) -> Any:
    """Return ``record.choices[0]`` for OpenAI-shaped records, else None."""
    choices = getattr(record, "choices", None)
    if not choices:
        return None
    return choices[0]


def int_or_none(value: Any) -> int | None:
    """Coerce a vendor count to int, treating missing/non-numeric as None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None
