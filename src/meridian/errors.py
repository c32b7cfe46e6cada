"""Exception hierarchy for Meridian.

Every terminal failure reaching a caller is one of four provider error kinds:
``TransientProviderError``, ``FatalProviderError``, ``MalformedToolPayload`` or
``StreamUnavailable``. Callers decide on retries from ``retryable`` and
``retry_delay_ms`` alone; the engine never retries by itself.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class StatusCode(StrEnum):
    """Canonical status vocabulary (gRPC status names)."""

    OK = "OK"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
    FAILED_PRECONDITION = "FAILED_PRECONDITION"
    ABORTED = "ABORTED"
    UNIMPLEMENTED = "UNIMPLEMENTED"
    INTERNAL = "INTERNAL"
    UNAVAILABLE = "UNAVAILABLE"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class MeridianError(Exception):
    """Base exception for all Meridian errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(MeridianError):
    """Configuration validation or resolution failed."""


class ProviderError(MeridianError):
    """A vendor call or vendor stream failed.

    Carries the classification a caller needs to decide on a retry without
    looking at the message text.
    """

    default_retryable: bool = False
    default_code: StatusCode = StatusCode.UNKNOWN
    default_failure_reason: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        retry_delay_ms: float | None = None,
        status_code: int | None = None,
        code: StatusCode | None = None,
        failure_reason: str | None = None,
        metadata: dict[str, Any] | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_delay_ms = retry_delay_ms
        self.status_code = status_code
        self.code = code or self.default_code
        self.failure_reason = failure_reason or self.default_failure_reason
        self.metadata = dict(metadata) if metadata else {}
        self.provider = provider
        self.phase = phase


class TransientProviderError(ProviderError):
    """Retryable failure: transport hiccup, overload or rate limit."""

    default_retryable = True
    default_code = StatusCode.UNAVAILABLE
    default_failure_reason = "transient"


class RateLimitError(TransientProviderError):
    """Vendor rate limit exceeded (HTTP 429 or a throttling code)."""

    default_code = StatusCode.RESOURCE_EXHAUSTED
    default_failure_reason = "Rate limit exceeded"


class StreamAborted(TransientProviderError):
    """The vendor stream was abandoned before anything usable was accumulated."""

    default_code = StatusCode.ABORTED
    default_failure_reason = "aborted"


class FatalProviderError(ProviderError):
    """Non-retryable failure: bad request, auth failure, invalid tool schema."""

    default_retryable = False
    default_failure_reason = "External API error"


class MalformedToolPayload(FatalProviderError):
    """A sentinel-framed tool-call payload could not be parsed."""

    default_code = StatusCode.INTERNAL
    default_failure_reason = "Failed to parse model result"

    def __init__(self, message: str, *, raw_text: str, **kwargs: Any) -> None:
        kwargs["retryable"] = False
        super().__init__(message, **kwargs)
        self.raw_text = raw_text


class StreamUnavailable(FatalProviderError):
    """The vendor accepted a streaming request but returned no stream."""

    default_code = StatusCode.INTERNAL
    default_failure_reason = "Stream not available"

    def __init__(self, message: str = "Stream not available", **kwargs: Any) -> None:
        kwargs["retryable"] = False
        super().__init__(message, **kwargs)


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
