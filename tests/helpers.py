"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off stream fakes as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

from meridian.usage import TokenCount

if TYPE_CHECKING:
    from collections.abc import Sequence

    from meridian.models import ResponseEvent
    from meridian.usage import TokenSpan


@dataclass
class RecordingSink:
    """Synchronous sink that keeps every partial event in push order."""

    events: list[ResponseEvent] = field(default_factory=list)

    def __call__(self, event: ResponseEvent) -> None:
        self.events.append(event)

    @property
    def deltas(self) -> list[str]:
        return [event.delta for event in self.events if event.delta]

    @property
    def tool_call_events(self) -> list[ResponseEvent]:
        return [event for event in self.events if event.tool_calls]


@dataclass
class FakeTokenCounter:
    """Token counter double: fixed counts, records every call."""

    prompt: int = 10
    completion: int = 5
    error: BaseException | None = None
    calls: list[tuple[list[TokenSpan], str]] = field(default_factory=list)

    def count(self, spans: Sequence[TokenSpan], encoding: str) -> TokenCount:
        self.calls.append((list(spans), encoding))
        if self.error is not None:
            raise self.error
        return TokenCount(
            total=self.prompt + self.completion,
            prompt=self.prompt,
            completion=self.completion,
        )


@dataclass
class ManualClock:
    """Monotonic clock double advanced explicitly by tests."""

    now: float = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedStream:
    """Async vendor stream yielding scripted items.

    Exceptions in the script are raised in place. With ``hang=True`` the
    stream blocks forever once the script is exhausted.
    """

    def __init__(self, items: Sequence[Any], *, hang: bool = False) -> None:
        self._items = list(items)
        self._hang = hang
        self.closed = False
        self.consumed = 0

    def __aiter__(self) -> ScriptedStream:
        return self

    async def __anext__(self) -> Any:
        if not self._items:
            if self._hang:
                await asyncio.Event().wait()
            raise StopAsyncIteration
        item = self._items.pop(0)
        self.consumed += 1
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# Vendor record builders (attribute-shaped like the SDK objects)
# =============================================================================


def openai_chunk(
    text: str | None = None,
    *,
    tool_calls: list[dict[str, Any]] | None = None,
    finish_reason: str | None = None,
    usage: dict[str, int] | None = None,
    chunk_id: str = "chatcmpl-1",
    with_choice: bool = True,
) -> SimpleNamespace:
    """Build a ``ChatCompletionChunk``-shaped record."""
    calls = None
    if tool_calls is not None:
        calls = [
            SimpleNamespace(
                index=call["index"],
                id=call.get("id"),
                function=SimpleNamespace(
                    name=call.get("name"), arguments=call.get("arguments")
                ),
            )
            for call in tool_calls
        ]
    choices = []
    if with_choice:
        choices = [
            SimpleNamespace(
                index=0,
                delta=SimpleNamespace(content=text, tool_calls=calls),
                finish_reason=finish_reason,
            )
        ]
    return SimpleNamespace(
        id=chunk_id,
        choices=choices,
        usage=SimpleNamespace(**usage) if usage is not None else None,
    )


def invoke_chunk(body: dict[str, Any]) -> dict[str, Any]:
    """Wrap a JSON body the way InvokeModelWithResponseStream delivers it."""
    return {"chunk": {"bytes": json.dumps(body).encode("utf-8")}}
