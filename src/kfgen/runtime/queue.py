"""Per-object work queue for the controller manager.

:class:`WorkQueue` gives the manager three guarantees:

* **Deduplication** -- a key added several times before a worker picks it
  up is processed once.
* **At most one in flight** -- a key re-added while a worker holds it is
  parked and re-queued only when the worker calls :meth:`WorkQueue.done`.
* **Delayed adds** -- :meth:`WorkQueue.add_after` and
  :meth:`WorkQueue.add_rate_limited` schedule a key for later; the earliest
  pending schedule wins.
"""

from __future__ import annotations

import asyncio
from typing import Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)

_SHUTDOWN = object()


class Backoff:
    """Capped exponential delays, with per-key failure counters.

    ``delay(n)`` is ``base * 2 ** (n - 1)`` clamped to ``cap``: with the
    defaults 1, 2, 4, 8, ... up to 300 seconds.
    """

    def __init__(self, base: float = 1.0, cap: float = 300.0) -> None:
        self.base = base
        self.cap = cap
        self._failures: dict[Hashable, int] = {}

    def delay(self, attempt: int) -> float:
        if attempt <= 0:
            return 0.0
        # Clamp the exponent so huge retry counts do not overflow.
        return min(self.cap, self.base * 2 ** min(attempt - 1, 62))

    def next(self, key: Hashable) -> float:
        """Record a failure for *key* and return the delay before its retry."""
        self._failures[key] = self._failures.get(key, 0) + 1
        return self.delay(self._failures[key])

    def failures(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    def reset(self, key: Hashable) -> None:
        self._failures.pop(key, None)


class WorkQueue(Generic[K]):
    """Asyncio work queue keyed by object identity.

    Example::

        queue = WorkQueue()
        queue.add(key)
        key = await queue.get()
        try:
            ...
        finally:
            queue.done(key)
    """

    def __init__(self, backoff: Optional[Backoff] = None) -> None:
        self.backoff = backoff or Backoff()
        self._items: asyncio.Queue[object] = asyncio.Queue()
        self._queued: set[K] = set()
        self._processing: set[K] = set()
        self._dirty: set[K] = set()
        self._timers: dict[K, asyncio.TimerHandle] = {}
        self._shutdown = False

    def __len__(self) -> int:
        return len(self._queued)

    @property
    def shutting_down(self) -> bool:
        return self._shutdown

    def add(self, key: K) -> None:
        """Queue *key* now (or as soon as its current processing ends)."""
        if self._shutdown:
            return
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._items.put_nowait(key)

    def add_after(self, key: K, delay: float) -> None:
        """Queue *key* after *delay* seconds unless an earlier add is pending."""
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        if key in self._queued:
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= when:
                return
            existing.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    def add_rate_limited(self, key: K) -> float:
        """Queue *key* after its next backoff delay; returns the delay."""
        delay = self.backoff.next(key)
        self.add_after(key, delay)
        return delay

    def forget(self, key: K) -> None:
        """Reset the backoff of *key* after a successful pass."""
        self.backoff.reset(key)

    def pending(self, key: K) -> bool:
        """True if *key* is queued, parked, or scheduled."""
        return key in self._queued or key in self._dirty or key in self._timers

    async def get(self) -> Optional[K]:
        """Wait for the next key; ``None`` once the queue shuts down."""
        if self._shutdown:
            return None
        item = await self._items.get()
        if item is _SHUTDOWN:
            # Wake the next waiting worker too.
            self._items.put_nowait(_SHUTDOWN)
            return None
        key: K = item  # type: ignore[assignment]
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: K) -> None:
        """Mark *key* finished; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def shutdown(self) -> None:
        """Stop accepting keys and release every waiting :meth:`get`."""
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._items.put_nowait(_SHUTDOWN)

    def _fire(self, key: K) -> None:
        self._timers.pop(key, None)
        self.add(key)
