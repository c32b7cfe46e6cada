"""Stream accumulation: vendor records in, canonical events and one response out.

One :class:`StreamAccumulator` lives for exactly one vendor stream. It is fed
records strictly in delivery order, pushes partial events to a synchronous sink
as soon as they are safe to forward, and produces the single terminal
:class:`~meridian.models.CanonicalResponse` (or raises) from :meth:`finalize`
or :meth:`abort`.

Forwarding rules:

- While the sentinel decision is open nothing is forwarded. When the text turns
  out to be ordinary content the buffered prefix is pushed as one event and
  every later delta streams through unbuffered.
- Once the text is known to be a sentinel block, no text is ever forwarded.
- Each native tool-call slot pushes one event when it starts; argument
  fragments accumulate silently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING, Any

from meridian.adapters.base import read_event
from meridian.errors import StreamAborted
from meridian.models import CanonicalResponse, ResponseEvent, ToolCall, UsageSnapshot, new_id
from meridian.sentinel import SentinelToolCallDetector, ToolCallMode, resolve_tool_calls
from meridian.usage import compute_metrics, resolve_usage

if TYPE_CHECKING:
    from collections.abc import Callable

    from meridian.adapters.base import StreamAdapter, ToolCallFragment, VendorDelta
    from meridian.models import CanonicalRequest, FinishReason, Usage
    from meridian.usage import TokenCounter

    Sink = Callable[[ResponseEvent], Any]

logger = logging.getLogger(__name__)


@dataclass
class _ToolCallSlot:
    id: str
    name: str = ""
    arguments: list[str] = field(default_factory=list)
    explicit_id: bool = False

    def resolve(self) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, arguments="".join(self.arguments))


class StreamAccumulator:
    """Accumulates one vendor stream into canonical output.

    Args:
        adapter: Vendor adapter answering the per-record questions.
        request: The request this stream answers (used for usage fallback).
        sink: Receives partial events; ``None`` discards them.
        counter: Token counter for the usage fallback.
        encoding: Overrides the adapter's tokenizer encoding.
        streaming: ``False`` assembles a one-shot response: no partial events
            and the full text in ``message``.
        started_at: Dispatch time on ``clock``'s scale; defaults to now.
        clock: Monotonic clock for latency metrics.
    """

    def __init__(
        self,
        adapter: StreamAdapter,
        request: CanonicalRequest,
        *,
        sink: Sink | None = None,
        counter: TokenCounter | None = None,
        encoding: str | None = None,
        streaming: bool = True,
        started_at: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adapter = adapter
        self.request = request
        self._sink = sink
        self._counter = counter
        self._encoding = encoding or adapter.encoding
        self._streaming = streaming
        self._clock = clock
        self._started_at = clock() if started_at is None else started_at

        self._detector = (
            SentinelToolCallDetector(
                adapter.sentinel, adapter.normalize_text, adapter.escape_tail
            )
            if adapter.sentinel is not None
            else None
        )
        self._id: str | None = None
        self._text: list[str] = []
        self._slots: dict[int, _ToolCallSlot] = {}
        self._block: tuple[ToolCall, ...] | None = None
        self._usage: UsageSnapshot | None = None
        self._stop_reason: Any = None
        self._first_token_at: float | None = None
        self._closed = False

    # --- state -----------------------------------------------------------

    @property
    def mode(self) -> ToolCallMode:
        """Current tool-call mode; native-only adapters are always ``TEXT``."""
        if self._detector is None:
            return ToolCallMode.TEXT
        return self._detector.mode

    @property
    def text(self) -> str:
        """Full text accumulated so far."""
        return "".join(self._text)

    @property
    def complete(self) -> bool:
        """True once an early self-contained tool-call block has arrived."""
        return self._block is not None

    @property
    def response_id(self) -> str:
        """Vendor response id, or a generated one fixed on first use."""
        if self._id is None:
            self._id = new_id()
        return self._id

    @property
    def first_token_at(self) -> float | None:
        return self._first_token_at

    # --- feeding ---------------------------------------------------------

    def feed(self, event: Any) -> None:
        """Decode one raw vendor event and apply it."""
        self.apply(read_event(self.adapter, event))

    def apply(self, delta: VendorDelta) -> None:
        """Apply one reduced vendor record."""
        if self._closed:
            raise RuntimeError("StreamAccumulator already produced its response")
        if self.complete:
            logger.debug("Ignoring %s record after a complete tool-call block", self.adapter.name)
            return

        if delta.response_id and self._id is None:
            self._id = delta.response_id
        if delta.usage is not None:
            self._usage = delta.usage if self._usage is None else self._usage.merge(delta.usage)
        if delta.stop_reason is not None:
            self._stop_reason = delta.stop_reason

        if delta.text or delta.tool_call_fragments or delta.tool_call_block:
            if self._first_token_at is None:
                self._first_token_at = self._clock()

        if delta.text:
            self._apply_text(delta.text, delta.stop_reason)
        for fragment in sorted(delta.tool_call_fragments, key=lambda f: f.index):
            self._apply_fragment(fragment)
        if delta.tool_call_block:
            self._block = tuple(delta.tool_call_block)
            logger.debug(
                "%s delivered %d tool call(s) in one block",
                self.adapter.name,
                len(self._block),
            )

    def _apply_text(self, chunk: str, stop_reason: Any) -> None:
        self._text.append(chunk)
        finish_reason = self.adapter.finish_reasons.map(stop_reason)
        if self._detector is None:
            self._emit(ResponseEvent(id=self.response_id, delta=chunk, finish_reason=finish_reason))
            return

        before = self._detector.mode
        mode = self._detector.feed(chunk)
        if mode is not ToolCallMode.TEXT:
            return
        # The first TEXT decision flushes everything buffered so far.
        pending = self.text if before is ToolCallMode.UNDETERMINED else chunk
        self._emit(ResponseEvent(id=self.response_id, delta=pending, finish_reason=finish_reason))

    def _apply_fragment(self, fragment: ToolCallFragment) -> None:
        index = fragment.index
        slot = self._slots.get(index)
        if slot is not None and fragment.id and slot.explicit_id and fragment.id != slot.id:
            # A different call reusing an occupied index opens a new slot after the others.
            index = max(self._slots) + 1
            slot = None

        if slot is None:
            slot = _ToolCallSlot(
                id=fragment.id or new_id(),
                name=fragment.name or "",
                explicit_id=bool(fragment.id),
            )
            self._slots[index] = slot
            self._emit(
                ResponseEvent(
                    id=self.response_id,
                    tool_calls=(ToolCall(id=slot.id, name=slot.name),),
                )
            )
        elif fragment.name and not slot.name:
            slot.name = fragment.name
        if fragment.arguments:
            slot.arguments.append(fragment.arguments)

    def _emit(self, event: ResponseEvent) -> None:
        if self._streaming and self._sink is not None:
            self._sink(event)

    # --- terminal --------------------------------------------------------

    def _close(self) -> None:
        if self._closed:
            raise RuntimeError("StreamAccumulator already produced its response")
        self._closed = True

    def _settle_mode(self) -> ToolCallMode:
        """Close the sentinel decision; an open prefix is flushed as text."""
        if self._detector is None:
            return ToolCallMode.TEXT
        before = self._detector.mode
        mode = self._detector.finish()
        if before is ToolCallMode.UNDETERMINED and mode is ToolCallMode.TEXT and self._text:
            self._emit(ResponseEvent(id=self.response_id, delta=self.text))
        return mode

    def _slot_calls(self) -> tuple[ToolCall, ...]:
        return tuple(self._slots[index].resolve() for index in sorted(self._slots))

    def _usage_for(self, completion_text: str, tool_calls: tuple[ToolCall, ...]) -> Usage | None:
        return resolve_usage(
            self._usage,
            request=self.request,
            completion_text=completion_text,
            tool_calls=tool_calls,
            counter=self._counter,
            encoding=self._encoding,
        )

    def _response(
        self,
        *,
        content: str,
        tool_calls: tuple[ToolCall, ...],
        usage: Usage | None,
        finish_reason: FinishReason,
        aborted: bool = False,
    ) -> CanonicalResponse:
        metrics = compute_metrics(
            usage,
            started_at=self._started_at,
            finished_at=self._clock(),
            first_token_at=self._first_token_at,
        )
        return CanonicalResponse(
            id=self.response_id,
            message="" if self._streaming else content,
            content=content,
            tool_calls=tool_calls,
            usage=usage,
            metrics=metrics,
            finish_reason=finish_reason,
            created_at=time.time(),
            aborted=aborted,
        )

    def finalize(self) -> CanonicalResponse:
        """Produce the terminal response for a stream that ended normally.

        Raises:
            MalformedToolPayload: The text was a sentinel block that could not
                be resolved into tool calls.
        """
        self._close()
        mode = self._settle_mode()
        text = self.text

        if self._block is not None:
            tool_calls = self._slot_calls() + self._block
            content = "" if mode is ToolCallMode.TOOL_CALL else text
            usage = self._usage_for(text, tool_calls)
            finish_reason: FinishReason = "tool_calls"
        elif mode is ToolCallMode.TOOL_CALL and self._detector is not None:
            tool_calls = resolve_tool_calls(
                text, self._detector.markers, self.adapter.normalize_text
            )
            content = ""
            usage = self._usage_for(text, ())
            finish_reason = "tool_calls"
        else:
            tool_calls = self._slot_calls()
            content = text
            usage = self._usage_for(text, tool_calls)
            finish_reason = self.adapter.finish_reasons.resolve(
                self._stop_reason, has_tool_calls=bool(tool_calls)
            )

        logger.debug(
            "Finalized %s stream: mode=%s tool_calls=%d finish_reason=%s",
            self.adapter.name,
            mode.value,
            len(tool_calls),
            finish_reason,
        )
        return self._response(
            content=content, tool_calls=tool_calls, usage=usage, finish_reason=finish_reason
        )

    def abort(self, reason: str = "stream abandoned") -> CanonicalResponse:
        """Synthesize a best-effort response for a stream that did not finish.

        Only ordinary text is salvaged; partially streamed tool calls are not.

        Raises:
            StreamAborted: Nothing usable was accumulated.
        """
        if self.complete:
            return self.finalize()
        self._close()
        mode = self._settle_mode()
        if mode is ToolCallMode.TOOL_CALL or not self._text:
            logger.debug("Aborting %s stream with nothing usable: %s", self.adapter.name, reason)
            raise StreamAborted(
                f"{self.adapter.name} stream aborted before a usable response: {reason}",
                provider=self.adapter.name,
                phase="stream",
            )

        text = self.text
        logger.debug("Aborting %s stream with %d chars of text: %s", self.adapter.name, len(text), reason)
        return self._response(
            content=text,
            tool_calls=(),
            usage=self._usage_for(text, ()),
            finish_reason="unspecified",
            aborted=True,
        )
