"""Token usage resolution and derived throughput metrics.

Vendor-reported counts win whenever they are usable. Otherwise the prompt
(the whole prior conversation) and the completion are counted with an external
tokenizer keyed by the adapter's encoding identifier.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import tiktoken

from meridian.errors import ConfigurationError
from meridian.models import Metrics, Usage

if TYPE_CHECKING:
    from collections.abc import Sequence

    from meridian.models import CanonicalRequest, ToolCall, UsageSnapshot

logger = logging.getLogger(__name__)

# Chat framing overhead used by OpenAI's token counting recipe.
_TOKENS_PER_MESSAGE = 3
_REPLY_PRIMING_TOKENS = 3


@dataclass(frozen=True)
class TokenSpan:
    """A role-tagged piece of text handed to the tokenizer."""

    role: str
    content: str


@dataclass(frozen=True)
class TokenCount:
    """Tokenizer result for a conversation plus its completion."""

    total: int
    prompt: int
    completion: int


@runtime_checkable
class TokenCounter(Protocol):
    """Opaque token counting service.

    The last span is the completion span; every span before it is prompt.
    """

    def count(self, spans: Sequence[TokenSpan], encoding: str) -> TokenCount:
        """Count prompt and completion tokens."""
        ...


class TiktokenCounter:
    """Default :class:`TokenCounter` backed by tiktoken encodings."""

    def __init__(self) -> None:
        self._encodings: dict[str, Any] = {}

    def _encoding(self, name: str) -> Any:
        encoding = self._encodings.get(name)
        if encoding is not None:
            return encoding
        try:
            encoding = tiktoken.get_encoding(name)
        except ValueError:
            try:
                encoding = tiktoken.encoding_for_model(name)
            except KeyError as e:
                raise ConfigurationError(
                    f"Unknown tokenizer encoding: {name!r}",
                    hint="Use a tiktoken encoding such as 'cl100k_base' or 'o200k_base'.",
                ) from e
        self._encodings[name] = encoding
        return encoding

    def count(self, spans: Sequence[TokenSpan], encoding: str) -> TokenCount:
        """Count tokens with per-message framing on the prompt side."""
        if not spans:
            return TokenCount(total=0, prompt=0, completion=0)
        enc = self._encoding(encoding)

        def size(text: str) -> int:
            return len(enc.encode(text, disallowed_special=()))

        *prompt_spans, completion_span = spans
        prompt = sum(
            _TOKENS_PER_MESSAGE + size(span.role) + size(span.content)
            for span in prompt_spans
        )
        if prompt_spans:
            prompt += _REPLY_PRIMING_TOKENS
        completion = size(completion_span.content)
        return TokenCount(total=prompt + completion, prompt=prompt, completion=completion)


def _render(content: str | None, tool_calls: Sequence[ToolCall] | None) -> str:
    pieces = [content or ""]
    for call in tool_calls or ():
        pieces.append(f"{call.name}{call.arguments}")
    return "\n".join(piece for piece in pieces if piece)


def conversation_spans(request: CanonicalRequest) -> list[TokenSpan]:
    """Render a request's messages, tool-call arguments included, as spans."""
    return [
        TokenSpan(role=message.role, content=_render(message.content, message.tool_calls))
        for message in request.messages
    ]


def count_request_tokens(
    request: CanonicalRequest, counter: TokenCounter, encoding: str
) -> int:
    """Return the prompt token count of *request* alone."""
    spans = [*conversation_spans(request), TokenSpan(role="assistant", content="")]
    return counter.count(spans, encoding).prompt


def _vendor_usage(reported: UsageSnapshot) -> Usage | None:
    prompt, completion, total = reported.prompt, reported.completion, reported.total
    if prompt is not None and completion is not None and total is not None:
        if total == prompt + completion:
            return Usage(prompt=prompt, completion=completion, total=total)
        logger.warning(
            "Vendor usage is inconsistent (prompt=%s completion=%s total=%s); "
            "counting tokens instead",
            prompt,
            completion,
            total,
        )
        return None
    if total is not None:
        return Usage(prompt=prompt, completion=completion, total=total)
    if prompt is not None and completion is not None:
        return Usage(prompt=prompt, completion=completion, total=prompt + completion)
    return None


def resolve_usage(
    reported: UsageSnapshot | None,
    *,
    request: CanonicalRequest,
    completion_text: str,
    tool_calls: Sequence[ToolCall] = (),
    counter: TokenCounter | None = None,
    encoding: str = "cl100k_base",
) -> Usage | None:
    """Resolve canonical usage for one completed exchange.

    Returns None when the vendor reported nothing usable and no counter is
    available (or the counter failed).
    """
    if reported is not None:
        usage = _vendor_usage(reported)
        if usage is not None:
            return usage

    if counter is None:
        logger.debug("No vendor usage and no token counter; usage unavailable")
        return None

    spans = [
        *conversation_spans(request),
        TokenSpan(role="assistant", content=_render(completion_text, tool_calls)),
    ]
    try:
        counted = counter.count(spans, encoding)
    except Exception as exc:
        logger.warning("Token counting fallback failed: %s", exc)
        return None
    return Usage(
        prompt=counted.prompt,
        completion=counted.completion,
        total=counted.prompt + counted.completion,
    )


def compute_metrics(
    usage: Usage | None,
    *,
    started_at: float,
    finished_at: float,
    first_token_at: float | None = None,
) -> Metrics | None:
    """Derive latency/throughput; None when usage is unavailable."""
    if usage is None or usage.total is None:
        return None
    elapsed = finished_at - started_at
    tokens_per_second = usage.total / elapsed if elapsed > 0 else None
    time_to_first_token_ms = (
        (first_token_at - started_at) * 1000.0 if first_token_at is not None else None
    )
    return Metrics(
        time_to_first_token_ms=time_to_first_token_ms,
        tokens_per_second=tokens_per_second,
    )
