"""Async drivers: consume a vendor stream or a one-shot response.

Both drivers guarantee that a terminal failure reaching the caller is a
classified :class:`~meridian.errors.ProviderError`; cancellation is never
classified. Partial events pushed before a failure are not retracted.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import TYPE_CHECKING, Any

from meridian.accumulator import StreamAccumulator
from meridian.classify import classify_error
from meridian.errors import StreamUnavailable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from meridian.adapters.base import StreamAdapter
    from meridian.models import CanonicalRequest, CanonicalResponse, ResponseEvent
    from meridian.usage import TokenCounter

logger = logging.getLogger(__name__)

_END = object()


async def _iterate(events: Any) -> AsyncIterator[Any]:
    """Yield from an async iterable, or from a blocking one off the event loop."""
    if hasattr(events, "__aiter__"):
        async for event in events:
            yield event
        return
    iterator = iter(events)
    while True:
        event = await asyncio.to_thread(next, iterator, _END)
        if event is _END:
            return
        yield event


async def _close_quietly(resource: Any) -> None:
    """Close a vendor stream on every exit path (``aclose`` or ``close``)."""
    for name in ("aclose", "close"):
        closer = getattr(resource, name, None)
        if not callable(closer):
            continue
        try:
            result = closer()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("Closing vendor stream failed: %s", exc, exc_info=True)
        return


async def normalize_stream(
    events: Any,
    *,
    adapter: StreamAdapter,
    request: CanonicalRequest,
    sink: Callable[[ResponseEvent], Any] | None = None,
    counter: TokenCounter | None = None,
    encoding: str | None = None,
    started_at: float | None = None,
    idle_timeout_s: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> CanonicalResponse:
    """Consume one vendor stream and return its single terminal response.

    Args:
        events: The vendor stream (async or blocking iterable); ``None`` when
            the vendor returned no stream.
        adapter: Vendor adapter for the stream's record shape.
        request: The request being answered.
        sink: Synchronous receiver for partial events, e.g. ``queue.put_nowait``.
        counter: Token counter used when the vendor reports no usable usage.
        encoding: Tokenizer encoding override.
        started_at: Dispatch time on ``clock``'s scale.
        idle_timeout_s: Longest wait for the next vendor event before the stream
            is abandoned and a best-effort response is synthesized.
        clock: Monotonic clock shared with the accumulator.

    Raises:
        StreamUnavailable: *events* is ``None``.
        ProviderError: Any other failure, already classified.
    """
    if events is None:
        raise StreamUnavailable(
            f"{adapter.name} accepted a streaming request but returned no stream",
            provider=adapter.name,
            phase="stream",
        )

    accumulator = StreamAccumulator(
        adapter,
        request,
        sink=sink,
        counter=counter,
        encoding=encoding,
        streaming=True,
        started_at=started_at,
        clock=clock,
    )
    iterator = _iterate(events)
    try:
        while True:
            try:
                if idle_timeout_s is None:
                    event = await anext(iterator)
                else:
                    event = await asyncio.wait_for(anext(iterator), idle_timeout_s)
            except StopAsyncIteration:
                break
            except TimeoutError:
                if idle_timeout_s is None:
                    raise
                logger.warning(
                    "%s stream idle for %ss; abandoning it", adapter.name, idle_timeout_s
                )
                return accumulator.abort(f"no event within {idle_timeout_s}s")
            accumulator.feed(event)
            if accumulator.complete:
                break
        return accumulator.finalize()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        error = classify_error(exc, provider=adapter.name, phase="stream")
        if error is exc:
            raise
        raise error from exc
    finally:
        await iterator.aclose()
        await _close_quietly(events)


async def stream_completion(
    events: Any,
    *,
    adapter: StreamAdapter,
    request: CanonicalRequest,
    counter: TokenCounter | None = None,
    encoding: str | None = None,
    idle_timeout_s: float | None = None,
) -> AsyncIterator[ResponseEvent | CanonicalResponse]:
    """Yield partial events as they become available, then the final response."""
    queue: asyncio.Queue[ResponseEvent] = asyncio.Queue()
    task = asyncio.create_task(
        normalize_stream(
            events,
            adapter=adapter,
            request=request,
            sink=queue.put_nowait,
            counter=counter,
            encoding=encoding,
            idle_timeout_s=idle_timeout_s,
        )
    )
    getter: asyncio.Future[ResponseEvent] | None = None
    try:
        while True:
            if not queue.empty():
                yield queue.get_nowait()
                continue
            if task.done():
                break
            getter = asyncio.ensure_future(queue.get())
            await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter.done():
                yield getter.result()
            else:
                getter.cancel()
            getter = None
        yield task.result()
    finally:
        if getter is not None and not getter.done():
            getter.cancel()
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        elif not task.cancelled():
            # Mark a failure the consumer never reached as retrieved.
            task.exception()


def normalize_response(
    response: Any,
    *,
    adapter: StreamAdapter,
    request: CanonicalRequest,
    counter: TokenCounter | None = None,
    encoding: str | None = None,
    started_at: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> CanonicalResponse:
    """Assemble the terminal response for a one-shot (non-streaming) call."""
    accumulator = StreamAccumulator(
        adapter,
        request,
        counter=counter,
        encoding=encoding,
        streaming=False,
        started_at=started_at,
        clock=clock,
    )
    try:
        accumulator.apply(adapter.parse_response(response))
        return accumulator.finalize()
    except Exception as exc:
        error = classify_error(exc, provider=adapter.name, phase="completion")
        if error is exc:
            raise
        raise error from exc
