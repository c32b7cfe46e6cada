"""Sentinel-framed tool calls embedded in free text.

Prompt-templated models have no native tool-call channel. They are instructed
to answer with::

    [TOOL_CALL]
    [{"function": "get_weather", "args": {"city": "Paris"}}]
    [/TOOL_CALL]

While streaming, :class:`SentinelToolCallDetector` decides as early as
possible whether the growing text is such a block or ordinary content. The
decision is a left-to-right simulation of :func:`extract_payload` on the final
text: both look at the normalized text with leading whitespace removed and
require it to begin with the opening marker.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
import logging
import re
from textwrap import dedent
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from meridian.errors import MalformedToolPayload
from meridian.models import ToolCall, new_id

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from meridian.models import ToolDefinition

logger = logging.getLogger(__name__)


class ToolCallMode(Enum):
    """Whether a stream carries text or a tool-call block."""

    UNDETERMINED = "undetermined"
    TEXT = "text"
    TOOL_CALL = "tool_call"


@dataclass(frozen=True)
class SentinelMarkers:
    """Opening/closing delimiters around an embedded tool-call payload."""

    open: str = "[TOOL_CALL]"
    close: str = "[/TOOL_CALL]"

    def __post_init__(self) -> None:
        """Markers must be non-empty and distinct."""
        if not self.open or not self.close or self.open == self.close:
            raise ValueError("Sentinel markers must be non-empty and distinct")

    @property
    def pattern(self) -> re.Pattern[str]:
        """Greedy match of everything between the first opener and the last closer."""
        return re.compile(
            rf"{re.escape(self.open)}(.*){re.escape(self.close)}", re.DOTALL
        )


DEFAULT_MARKERS = SentinelMarkers()


def _identity(text: str) -> str:
    return text


def detect(buffer: str, markers: SentinelMarkers = DEFAULT_MARKERS) -> ToolCallMode:
    """Classify a normalized buffer against the opening marker."""
    head = buffer.lstrip()
    size = len(markers.open)
    if len(head) < size:
        if markers.open.startswith(head):
            return ToolCallMode.UNDETERMINED
        return ToolCallMode.TEXT
    if head[:size] == markers.open:
        return ToolCallMode.TOOL_CALL
    return ToolCallMode.TEXT


class SentinelToolCallDetector:
    """Incremental, monotone sentinel detector for one stream.

    ``UNDETERMINED`` moves to ``TEXT`` or ``TOOL_CALL`` exactly once and never
    back. Normalization is applied to the whole buffer on every feed so that
    escapes split across two deltas are still undone. ``escape_tail`` reports
    how many trailing raw characters may still be the start of an escape; the
    decision is taken on the text before them until more input arrives.
    """

    def __init__(
        self,
        markers: SentinelMarkers = DEFAULT_MARKERS,
        normalize: Callable[[str], str] | None = None,
        escape_tail: Callable[[str], int] | None = None,
    ) -> None:
        self.markers = markers
        self._normalize = normalize or _identity
        self._escape_tail = escape_tail
        self._raw = ""
        self._mode = ToolCallMode.UNDETERMINED

    @property
    def mode(self) -> ToolCallMode:
        return self._mode

    @property
    def buffer(self) -> str:
        """Normalized text seen while the decision was still open."""
        return self._normalize(self._raw)

    def _settled(self) -> str:
        held = self._escape_tail(self._raw) if self._escape_tail is not None else 0
        if held <= 0:
            return self.buffer
        return self._normalize(self._raw[:-held])

    def feed(self, delta: str) -> ToolCallMode:
        """Add a raw text delta and return the (possibly new) mode."""
        if self._mode is not ToolCallMode.UNDETERMINED:
            return self._mode
        self._raw += delta
        self._decide(self._settled())
        return self._mode

    def finish(self) -> ToolCallMode:
        """Close the stream: an open decision resolves to ``TEXT``.

        A held escape tail can no longer complete, so the whole buffer decides.
        """
        if self._mode is ToolCallMode.UNDETERMINED:
            self._decide(self.buffer)
        if self._mode is ToolCallMode.UNDETERMINED:
            self._mode = ToolCallMode.TEXT
        return self._mode

    def _decide(self, buffer: str) -> None:
        self._mode = detect(buffer, self.markers)
        if self._mode is not ToolCallMode.UNDETERMINED:
            logger.debug("Sentinel detector resolved to %s", self._mode.value)


def extract_payload(
    text: str,
    markers: SentinelMarkers = DEFAULT_MARKERS,
    normalize: Callable[[str], str] | None = None,
) -> str | None:
    """Return the framed payload when *text* is a sentinel block, else None."""
    head = (normalize or _identity)(text).lstrip()
    if not head.startswith(markers.open):
        return None
    match = markers.pattern.match(head)
    if match is None:
        return None
    return match.group(1)


class _SentinelEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    function: str = Field(min_length=1)
    args: Any = Field(default_factory=dict)


_ENTRIES = TypeAdapter(list[_SentinelEntry])


def parse_tool_calls(payload: str, *, raw_text: str) -> tuple[ToolCall, ...]:
    """Parse a sentinel payload into tool calls with freshly generated ids."""
    try:
        entries = _ENTRIES.validate_python(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as e:
        raise MalformedToolPayload(
            "Cannot parse the model result to JSON format, original response was: "
            + raw_text,
            raw_text=raw_text,
        ) from e
    return tuple(
        ToolCall(id=new_id(), name=entry.function, arguments=json.dumps(entry.args))
        for entry in entries
    )


def resolve_tool_calls(
    text: str,
    markers: SentinelMarkers = DEFAULT_MARKERS,
    normalize: Callable[[str], str] | None = None,
) -> tuple[ToolCall, ...]:
    """Resolve a stream that was classified ``TOOL_CALL`` into tool calls."""
    payload = extract_payload(text, markers, normalize)
    if payload is None:
        raise MalformedToolPayload(
            "Message started as a tool call but no closing "
            f"{markers.close} marker was found, original response was: {text}",
            raw_text=text,
            failure_reason="Tool call failed to match markers",
        )
    return parse_tool_calls(payload, raw_text=text)


def render_tool_instructions(
    tools: Sequence[ToolDefinition],
    markers: SentinelMarkers = DEFAULT_MARKERS,
) -> str:
    """Render the instruction block teaching a model the sentinel format."""
    listing = json.dumps(
        [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            }
            for tool in tools
        ],
        indent=2,
    )
    return dedent(
        """\
        If you need to call a tool please return in the following format:

        {open}
        [
          {{
            "function": "{{functionName}}",
            "args": {{
              "{{key}}": "{{value}}"
            }}
          }}
        ]
        {close}

        - You can call multiple tools in the same request.

        Here are the available tools:

        ```json
        {listing}
        ```

        please only return this pattern if the tool name matches one of the ones listed here

        - If you already have enough information, you don't need to call a tool.
        """
    ).format(open=markers.open, close=markers.close, listing=listing)
