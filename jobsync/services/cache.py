"""Store change notifications and the read cache that listens to them."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]


class StoreEvents:
    """Synchronous publish/subscribe hub for store writes.

    Listeners run inline in the publisher; one that raises is logged and does
    not stop the others.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, reason: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("store change listener failed reason=%s", reason)


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    size: int = 0

    def as_dict(self) -> dict[str, int | float]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "invalidations": self.invalidations,
            "size": self.size,
            "hit_rate": round(self.hits / total, 4) if total else 0.0,
        }


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float
    last_access: float = field(default=0.0)


class ReadCache:
    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 200,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self.clock = clock
        self._entries: dict[str, _Entry] = {}
        self._stats = CacheStats()

    def bind(self, events: StoreEvents) -> Callable[[], None]:
        return events.subscribe(lambda reason: self.invalidate_all(reason=reason))

    def get(self, key: str) -> Any | None:
        now = self.clock()
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= now:
            if entry is not None:
                del self._entries[key]
            self._stats.misses += 1
            return None
        entry.last_access = now
        self._stats.hits += 1
        return entry.value

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        now = self.clock()
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._prune(now)
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = _Entry(value=value, expires_at=now + ttl, last_access=now)

    def invalidate_all(self, *, reason: str = "manual") -> int:
        dropped = len(self._entries)
        self._entries.clear()
        self._stats.invalidations += 1
        logger.info("read cache invalidated reason=%s dropped=%s", reason, dropped)
        return dropped

    def stats(self) -> dict[str, int | float]:
        self._stats.size = len(self._entries)
        return self._stats.as_dict()

    def _prune(self, now: float) -> None:
        for key in [key for key, entry in self._entries.items() if entry.expires_at <= now]:
            del self._entries[key]
        if len(self._entries) < self.max_entries:
            return
        # Evict the least recently used fifth.
        victims = max(1, len(self._entries) // 5)
        for key, _ in sorted(self._entries.items(), key=lambda item: item[1].last_access)[:victims]:
            del self._entries[key]
