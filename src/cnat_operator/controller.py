from __future__ import annotations

import threading
from typing import Any, Callable, Iterable, Protocol

from .constants import KIND_AT
from .logging import logger
from .reconciler import RequeueAfter, Result, RetryableError
from .workqueue import RateLimitingQueue

SYNC_POLL_INTERVAL = 0.1
WORKER_RESTART_PERIOD = 1.0


class CacheSyncError(RuntimeError):
    pass


class SyncHandler(Protocol):
    def reconcile(self, key: str) -> Result: ...


def wait_for_cache_sync(
    stop_event: threading.Event, *synced: Callable[[], bool], poll: float = SYNC_POLL_INTERVAL
) -> bool:
    """Poll until every ``synced`` reports True; False if stopped first."""
    while not stop_event.is_set():
        if all(fn() for fn in synced):
            return True
        stop_event.wait(poll)
    return False


class Controller:
    """Worker pool draining a rate-limited queue into a reconciler.

    Workers never coordinate with each other: the queue guarantees a key is
    held by at most one worker at a time.
    """

    def __init__(
        self,
        queue: RateLimitingQueue,
        reconciler: SyncHandler,
        synced: Iterable[Callable[[], bool]] = (),
        *,
        name: str = KIND_AT,
    ) -> None:
        self.queue = queue
        self.reconciler = reconciler
        self.synced = list(synced)
        self.name = name
        self._workers: list[threading.Thread] = []

    def run(self, workers: int, stop_event: threading.Event) -> None:
        """Start ``workers`` threads and block until ``stop_event`` is set.

        Raises CacheSyncError if stopped before the caches synced.
        """
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")

        try:
            logger.info("Waiting for informer caches to sync", controller=self.name, event="run")
            if not wait_for_cache_sync(stop_event, *self.synced):
                raise CacheSyncError("failed to wait for caches to sync")

            logger.info("Starting workers", controller=self.name, event="run", workers=workers)
            self._workers = [
                threading.Thread(
                    target=self._run_worker_until,
                    args=(stop_event,),
                    name=f"{self.name.lower()}-worker-{i}",
                    daemon=True,
                )
                for i in range(workers)
            ]
            for thread in self._workers:
                thread.start()
            logger.info("Started workers", controller=self.name, event="run")

            stop_event.wait()
            logger.info("Shutting down workers", controller=self.name, event="run")
        finally:
            self.queue.shutdown()
            for thread in self._workers:
                thread.join()

    def _run_worker_until(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set() and not self.queue.shutting_down():
            try:
                self.run_worker()
            except Exception:
                logger.error(
                    "Worker crashed, restarting",
                    controller=self.name,
                    event="worker",
                    reason="WorkerCrashed",
                    exc_info=True,
                )
            stop_event.wait(WORKER_RESTART_PERIOD)

    def run_worker(self) -> None:
        while self.process_next_work_item():
            pass

    def process_next_work_item(self) -> bool:
        key, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            self._handle(key)
        finally:
            self.queue.done(key)
        return True

    def _handle(self, key: Any) -> None:
        if not isinstance(key, str):
            # An invalid item can never succeed, so stop retrying it
            self.queue.forget(key)
            logger.error(
                f"Expected string in workqueue but got {key!r}",
                controller=self.name,
                event="worker",
                reason="InvalidKey",
            )
            return

        try:
            result: Result = self.reconciler.reconcile(key)
        except Exception as e:
            result = RetryableError(e)

        if isinstance(result, RetryableError):
            self.queue.add_rate_limited(key)
            logger.error(
                f"Error syncing '{key}': {result.error}, requeuing",
                controller=self.name,
                resource=key,
                event="worker",
                reason="Requeued",
                requeues=self.queue.num_requeues(key),
            )
        elif isinstance(result, RequeueAfter):
            self.queue.forget(key)
            self.queue.add_after(key, result.delay)
            logger.info(
                f"Successfully synced '{key}', re-evaluating in {result.delay:.1f}s",
                controller=self.name,
                resource=key,
                event="worker",
                reason="RequeuedAfter",
            )
        else:
            self.queue.forget(key)
            logger.info(
                f"Successfully synced '{key}'",
                controller=self.name,
                resource=key,
                event="worker",
                reason="Synced",
            )
