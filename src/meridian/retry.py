"""Caller-side bounded retry driven by the classified error contract.

The engine never retries. A caller that wants to retry wraps one whole attempt
(open the vendor stream, normalize it) in :func:`retry_async`; the decision
reads ``ProviderError.retryable`` and ``retry_delay_ms`` only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from meridian.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional full jitter.

    ``max_elapsed_s`` caps the total time spent sleeping plus attempting,
    including any delay the vendor asked for.
    """

    max_attempts: int = 2
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True
    max_elapsed_s: float | None = 15.0

    def __post_init__(self) -> None:
        """Reject values that would make the schedule meaningless."""
        checks = (
            (self.max_attempts >= 1, "max_attempts must be >= 1"),
            (self.initial_delay_s >= 0, "initial_delay_s must be >= 0"),
            (self.backoff_multiplier > 0, "backoff_multiplier must be > 0"),
            (self.max_delay_s >= 0, "max_delay_s must be >= 0"),
            (
                self.max_elapsed_s is None or self.max_elapsed_s >= 0,
                "max_elapsed_s must be >= 0 or None",
            ),
        )
        for ok, message in checks:
            if not ok:
                raise ValueError(f"RetryPolicy.{message}")

    def backoff_s(self, retry_index: int) -> float:
        """Sleep before retry number *retry_index* (1-based), before vendor hints."""
        ceiling = min(
            self.max_delay_s,
            self.initial_delay_s * self.backoff_multiplier ** max(0, retry_index - 1),
        )
        if ceiling <= 0:
            return 0.0
        return random.uniform(0.0, ceiling) if self.jitter else ceiling  # noqa: S311


def should_retry(exc: BaseException) -> bool:
    """Retry classified retryable failures; never cancellation or raw errors."""
    if isinstance(exc, asyncio.CancelledError):
        return False
    return isinstance(exc, ProviderError) and exc.retryable


def _requested_delay_s(exc: BaseException) -> float:
    if isinstance(exc, ProviderError) and exc.retry_delay_ms is not None:
        return max(0.0, exc.retry_delay_ms / 1000.0)
    return 0.0


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry,
) -> T:
    """Await ``factory()`` until it succeeds or the policy gives up.

    The last failure is re-raised unchanged. A vendor-requested delay raises
    the backoff for that retry but never past ``max_elapsed_s``.
    """
    deadline = None if policy.max_elapsed_s is None else time.monotonic() + policy.max_elapsed_s
    attempt = 0
    while True:
        attempt += 1
        try:
            return await factory()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise
            delay = max(policy.backoff_s(attempt), _requested_delay_s(exc))
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            logger.debug(
                "Attempt %d/%d failed (%s); retrying in %.3fs",
                attempt,
                policy.max_attempts,
                type(exc).__name__,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)
