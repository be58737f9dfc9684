"""Unit tests for the deduplicating, delaying and rate-limited work queue."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from cnat_operator.workqueue import (
    BucketRateLimiter,
    DelayingQueue,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimitingQueue,
    WorkQueue,
)


def _get_with_timeout(queue: WorkQueue, timeout: float = 2.0):
    result: list = []
    thread = threading.Thread(target=lambda: result.append(queue.get()), daemon=True)
    thread.start()
    thread.join(timeout)
    return result[0] if result else None


class TestWorkQueue:
    """Test cases for dedup and in-flight tracking."""

    def test_duplicate_adds_collapse(self) -> None:
        queue = WorkQueue()
        queue.add("ns/a")
        queue.add("ns/a")
        queue.add("ns/b")

        assert len(queue) == 2
        assert queue.get() == ("ns/a", False)
        assert queue.get() == ("ns/b", False)
        assert len(queue) == 0

    def test_add_while_processing_is_redelivered_after_done(self) -> None:
        queue = WorkQueue()
        queue.add("ns/a")
        key, _ = queue.get()

        queue.add("ns/a")
        # Not handed out again while in flight
        assert len(queue) == 0

        queue.done(key)
        assert len(queue) == 1
        assert queue.get() == ("ns/a", False)

    def test_done_without_readd_does_not_redeliver(self) -> None:
        queue = WorkQueue()
        queue.add("ns/a")
        key, _ = queue.get()
        queue.done(key)

        assert len(queue) == 0

    def test_multiple_adds_during_processing_collapse_to_one(self) -> None:
        queue = WorkQueue()
        queue.add("ns/a")
        key, _ = queue.get()
        queue.add("ns/a")
        queue.add("ns/a")
        queue.done(key)

        assert len(queue) == 1

    def test_shutdown_unblocks_get(self) -> None:
        queue = WorkQueue()
        result: list = []
        thread = threading.Thread(target=lambda: result.append(queue.get()), daemon=True)
        thread.start()
        time.sleep(0.05)

        queue.shutdown()
        thread.join(2.0)

        assert result == [(None, True)]

    def test_shutdown_is_irreversible_and_ignores_adds(self) -> None:
        queue = WorkQueue()
        queue.shutdown()
        queue.add("ns/a")

        assert queue.shutting_down() is True
        assert len(queue) == 0
        assert queue.get() == (None, True)

    def test_no_pop_after_shutdown_even_with_queued_keys(self) -> None:
        queue = WorkQueue()
        queue.add("ns/a")
        queue.add("ns/b")
        queue.shutdown()

        assert queue.get() == (None, True)
        assert queue.get() == (None, True)

    def test_in_flight_key_can_finish_after_shutdown(self) -> None:
        queue = WorkQueue()
        queue.add("ns/a")
        key, _ = queue.get()
        queue.shutdown()

        queue.done(key)

        assert queue.get() == (None, True)

    def test_key_never_held_by_two_workers(self) -> None:
        queue = WorkQueue()
        holders: dict[str, int] = {}
        lock = threading.Lock()
        violations: list[str] = []
        stop = threading.Event()

        def worker() -> None:
            while True:
                key, shutdown = queue.get()
                if shutdown:
                    return
                with lock:
                    holders[key] = holders.get(key, 0) + 1
                    if holders[key] > 1:
                        violations.append(key)
                time.sleep(0.001)
                with lock:
                    holders[key] -= 1
                queue.done(key)

        def producer() -> None:
            while not stop.is_set():
                for i in range(3):
                    queue.add(f"ns/item-{i}")

        with ThreadPoolExecutor(max_workers=6) as pool:
            for _ in range(4):
                pool.submit(worker)
            pool.submit(producer)
            time.sleep(0.3)
            stop.set()
            queue.shutdown()

        assert violations == []


class TestDelayingQueue:
    """Test cases for add_after."""

    def test_add_after_delivers_after_delay(self) -> None:
        queue = DelayingQueue()
        try:
            started = time.monotonic()
            queue.add_after("ns/a", 0.1)
            assert len(queue) == 0

            key, shutdown = _get_with_timeout(queue)
            assert (key, shutdown) == ("ns/a", False)
            assert time.monotonic() - started >= 0.09
        finally:
            queue.shutdown()

    def test_non_positive_delay_adds_immediately(self) -> None:
        queue = DelayingQueue()
        try:
            queue.add_after("ns/a", 0)
            assert len(queue) == 1
        finally:
            queue.shutdown()

    def test_waiting_key_is_not_suppressed_by_later_add(self) -> None:
        queue = DelayingQueue()
        try:
            queue.add_after("ns/a", 0.1)
            queue.add("ns/a")
            assert queue.get() == ("ns/a", False)
            queue.done("ns/a")

            # The delayed copy still fires
            assert _get_with_timeout(queue) == ("ns/a", False)
        finally:
            queue.shutdown()

    def test_earlier_ready_time_wins(self) -> None:
        queue = DelayingQueue()
        try:
            queue.add_after("ns/a", 5.0)
            queue.add_after("ns/a", 0.05)

            assert _get_with_timeout(queue, timeout=1.0) == ("ns/a", False)
        finally:
            queue.shutdown()

    def test_later_ready_time_is_ignored(self) -> None:
        queue = DelayingQueue()
        try:
            queue.add_after("ns/a", 0.05)
            queue.add_after("ns/a", 5.0)
            assert _get_with_timeout(queue, timeout=1.0) == ("ns/a", False)
            queue.done("ns/a")
            time.sleep(0.1)
            assert len(queue) == 0
        finally:
            queue.shutdown()

    def test_add_after_ignored_once_shut_down(self) -> None:
        queue = DelayingQueue()
        queue.shutdown()
        queue.add_after("ns/a", 0.01)
        time.sleep(0.05)

        assert len(queue) == 0


class TestRateLimiters:
    """Test cases for backoff computation."""

    def test_exponential_backoff_doubles_per_failure(self) -> None:
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=1.0)

        assert limiter.when("a") == pytest.approx(0.01)
        assert limiter.when("a") == pytest.approx(0.02)
        assert limiter.when("a") == pytest.approx(0.04)
        assert limiter.num_requeues("a") == 3
        # Other keys have independent state
        assert limiter.when("b") == pytest.approx(0.01)

    def test_exponential_backoff_is_capped(self) -> None:
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.5, max_delay=2.0)
        delays = [limiter.when("a") for _ in range(10)]

        assert max(delays) == 2.0
        assert delays[-1] == 2.0

    def test_forget_resets_backoff(self) -> None:
        limiter = ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=1.0)
        limiter.when("a")
        limiter.when("a")
        limiter.forget("a")

        assert limiter.num_requeues("a") == 0
        assert limiter.when("a") == pytest.approx(0.01)

    def test_bucket_allows_burst_then_throttles(self) -> None:
        now = [100.0]
        limiter = BucketRateLimiter(qps=10.0, burst=2, clock=lambda: now[0])

        assert limiter.when("a") == 0.0
        assert limiter.when("b") == 0.0
        assert limiter.when("c") == pytest.approx(0.1)

        now[0] += 1.0
        assert limiter.when("d") == 0.0

    def test_max_of_returns_worst_delay(self) -> None:
        limiter = MaxOfRateLimiter(
            ItemExponentialFailureRateLimiter(base_delay=1.0, max_delay=10.0),
            BucketRateLimiter(qps=10.0, burst=100),
        )

        assert limiter.when("a") == 1.0
        assert limiter.when("a") == 2.0
        assert limiter.num_requeues("a") == 2
        limiter.forget("a")
        assert limiter.num_requeues("a") == 0


class TestRateLimitingQueue:
    """Test cases for add_rate_limited and forget."""

    def test_add_rate_limited_tracks_requeues(self) -> None:
        queue = RateLimitingQueue(
            rate_limiter=ItemExponentialFailureRateLimiter(base_delay=0.01, max_delay=0.05)
        )
        try:
            queue.add_rate_limited("ns/a")
            assert _get_with_timeout(queue) == ("ns/a", False)
            queue.done("ns/a")
            assert queue.num_requeues("ns/a") == 1

            queue.forget("ns/a")
            assert queue.num_requeues("ns/a") == 0
        finally:
            queue.shutdown()
