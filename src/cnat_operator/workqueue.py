"""Deduplicating, delay-capable, rate-limited work queue.

The queue tracks three sets of keys:

* ``_queue`` - keys waiting to be handed out, in FIFO order;
* ``_dirty`` - keys that need processing (everything in ``_queue`` plus
  keys re-added while in flight);
* ``_processing`` - keys currently held by a worker.

A key is never in ``_queue`` twice and never handed to two workers at once.
A key added while in flight stays dirty and is queued again by ``done``.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from typing import Any, Callable, Hashable

from . import metrics


class WorkQueue:
    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._cond = threading.Condition(threading.Lock())
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._shutting_down = False

    def add(self, item: Hashable) -> None:
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            metrics.WORKQUEUE_ADDS_TOTAL.labels(name=self.name).inc()
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._update_depth()
            self._cond.notify()

    def get(self) -> tuple[Any, bool]:
        """Block until a key is available; returns ``(key, shutdown)``."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if self._shutting_down:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            self._update_depth()
            return item, False

    def done(self, item: Hashable) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._update_depth()
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def _update_depth(self) -> None:
        metrics.WORKQUEUE_DEPTH.labels(name=self.name).set(len(self._queue))


class DelayingQueue(WorkQueue):
    """WorkQueue that can hold a key back for a given number of seconds."""

    def __init__(self, name: str = "default", clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(name)
        self._clock = clock
        self._waiting_cond = threading.Condition(threading.Lock())
        self._waiting: list[tuple[float, int, Hashable]] = []
        self._ready_at: dict[Hashable, float] = {}
        self._seq = itertools.count()
        self._stopped = False
        self._waiting_thread = threading.Thread(
            target=self._waiting_loop, name=f"{name}-delaying", daemon=True
        )
        self._waiting_thread.start()

    def add_after(self, item: Hashable, delay: float) -> None:
        if self.shutting_down():
            return
        if delay <= 0:
            self.add(item)
            return
        ready_at = self._clock() + delay
        with self._waiting_cond:
            current = self._ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), item))
            self._waiting_cond.notify()

    def shutdown(self) -> None:
        super().shutdown()
        with self._waiting_cond:
            self._stopped = True
            self._waiting_cond.notify_all()

    def _waiting_loop(self) -> None:
        while True:
            ready: list[Hashable] = []
            with self._waiting_cond:
                if self._stopped:
                    return
                now = self._clock()
                while self._waiting and self._waiting[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._waiting)
                    # Entries superseded by an earlier ready time are skipped
                    if self._ready_at.get(item) == ready_at:
                        del self._ready_at[item]
                        ready.append(item)
                if not ready:
                    timeout = self._waiting[0][0] - now if self._waiting else None
                    self._waiting_cond.wait(timeout)
                    continue
            for item in ready:
                self.add(item)


class RateLimiter:
    def when(self, item: Hashable) -> float:
        raise NotImplementedError

    def forget(self, item: Hashable) -> None:
        raise NotImplementedError

    def num_requeues(self, item: Hashable) -> int:
        raise NotImplementedError


class ItemExponentialFailureRateLimiter(RateLimiter):
    """Per-key delay of ``base_delay * 2**failures``, capped at ``max_delay``."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._lock = threading.Lock()
        self._failures: dict[Hashable, int] = {}

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        # Guard against float overflow for long-failing keys
        if exp > 64:
            return self.max_delay
        return min(self.base_delay * (2**exp), self.max_delay)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class BucketRateLimiter(RateLimiter):
    """Overall token bucket shared by all keys."""

    def __init__(
        self, qps: float = 10.0, burst: int = 100, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = clock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            now = self._clock()
            self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
            self._last = now
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def forget(self, item: Hashable) -> None:
        return

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfRateLimiter(RateLimiter):
    def __init__(self, *limiters: RateLimiter) -> None:
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self.limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)


def default_controller_rate_limiter() -> RateLimiter:
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )


class RateLimitingQueue(DelayingQueue):
    def __init__(
        self,
        name: str = "default",
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name, clock=clock)
        self.rate_limiter = rate_limiter or default_controller_rate_limiter()

    def add_rate_limited(self, item: Hashable) -> None:
        metrics.WORKQUEUE_RETRIES_TOTAL.labels(name=self.name).inc()
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)
