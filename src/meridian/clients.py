"""Process-wide cache of derived vendor clients and credential providers.

Entries are keyed by an external role identifier (for example an IAM role ARN
plus region). Construction is idempotent, so concurrent population is allowed
to race: every racer may build a value, the first one stored wins and the
others are discarded.

Entries never expire unless a TTL is configured. Credentials that rotate
underneath a cached client need a TTL (or an explicit :meth:`invalidate`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
import inspect
import logging
import time
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from meridian.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class ClientCache(Generic[T]):
    """Registry of cached clients with optional expiry."""

    #: Seconds an entry stays valid; ``None`` keeps entries forever.
    ttl_seconds: float | None = None
    clock: Callable[[], float] = time.monotonic
    _entries: dict[str, tuple[T, float | None]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Reject negative TTLs."""
        if self.ttl_seconds is not None and self.ttl_seconds < 0:
            raise ConfigurationError(
                f"ttl_seconds must be >= 0 or None, got {self.ttl_seconds}",
                hint="Use None to keep cached clients for the life of the process.",
            )

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> T | None:
        """Return the cached value if present and not expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            logger.debug("Cached client for %s expired", key)
            # Only drop the entry we looked at; a racer may have replaced it.
            if self._entries.get(key) is entry:
                del self._entries[key]
            return None
        return value

    def put(self, key: str, value: T) -> T:
        """Store *value* unless a live entry exists; return the winning value."""
        existing = self.get(key)
        if existing is not None:
            return existing
        expires_at = None if self.ttl_seconds is None else self.clock() + self.ttl_seconds
        entry = self._entries.setdefault(key, (value, expires_at))
        return entry[0]

    async def get_or_create(
        self, key: str, factory: Callable[[], T | Awaitable[T]]
    ) -> T:
        """Return the cached value for *key*, building it with *factory* if needed.

        *factory* may be a plain callable or return an awaitable.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        built: Any = factory()
        if inspect.isawaitable(built):
            built = await built
        winner = self.put(key, built)
        if winner is not built:
            logger.debug("Discarding duplicate client built for %s", key)
        else:
            logger.debug("Cached new client for %s", key)
        return winner

    def invalidate(self, key: str) -> None:
        """Drop one entry (e.g. after an authentication failure)."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()
