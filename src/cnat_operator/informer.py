from __future__ import annotations

import json
import threading
from typing import Any, Callable

from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from . import metrics
from .cache import (
    EVENT_ADDED,
    EVENT_DELETED,
    EVENT_MODIFIED,
    DeletedFinalStateUnknown,
    ObjectCache,
    WatchEvent,
    meta_namespace_key,
)
from .logging import logger

Handler = Callable[[WatchEvent], None]

RELIST_BACKOFF_SECONDS = 1.0


class Informer:
    """Mirror one resource kind into an ObjectCache via list+watch.

    ``list_func`` is a kubernetes client list call (for example
    ``CoreV1Api.list_namespaced_pod``); ``list_kwargs`` are passed to it
    on every list and watch. Handlers run on the informer thread in the order
    events are received, after the cache has been updated.
    """

    def __init__(
        self,
        kind: str,
        list_func: Callable[..., Any],
        cache: ObjectCache,
        *,
        list_kwargs: dict[str, Any] | None = None,
        watch_timeout: int = 60,
    ) -> None:
        self.kind = kind
        self.cache = cache
        self._list_func = list_func
        self._list_kwargs = dict(list_kwargs or {})
        self._watch_timeout = watch_timeout
        self._handlers: list[Handler] = []
        self._synced = threading.Event()
        self._watch: watch.Watch | None = None

    def add_handler(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def run(self, stop_event: threading.Event) -> None:
        """List and watch until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                resource_version = self._list_and_replace()
                self._watch_from(resource_version, stop_event)
            except ApiException as e:
                if e.status != 410:
                    logger.warning(
                        f"Watch for {self.kind} failed: {e.reason}",
                        event="watch",
                        reason="WatchFailed",
                        kind=self.kind,
                        status_code=e.status,
                    )
                    stop_event.wait(RELIST_BACKOFF_SECONDS)
            except Exception as e:
                logger.error(
                    f"Watch for {self.kind} failed: {e}",
                    event="watch",
                    reason="WatchFailed",
                    kind=self.kind,
                    exc_info=True,
                )
                stop_event.wait(RELIST_BACKOFF_SECONDS)

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()

    def _list_and_replace(self) -> str:
        response = self._list_func(_preload_content=False, **self._list_kwargs)
        body = json.loads(response.data)
        items: list[dict[str, Any]] = body.get("items") or []
        resource_version = (body.get("metadata") or {}).get("resourceVersion", "")

        previous = {key: self.cache.get_by_key(key) for key in self.cache.keys()}
        vanished = self.cache.replace(items)
        for obj in items:
            existed = previous.get(meta_namespace_key(obj)) is not None
            event_type = EVENT_MODIFIED if existed else EVENT_ADDED
            self._dispatch(WatchEvent(self.kind, event_type, obj))
        for key, last_known in vanished.items():
            self._dispatch(
                WatchEvent(self.kind, EVENT_DELETED, DeletedFinalStateUnknown(key, last_known))
            )

        if not self._synced.is_set():
            logger.info(
                f"{self.kind} cache synced",
                event="watch",
                reason="CacheSynced",
                kind=self.kind,
                objects=len(items),
            )
            self._synced.set()
        return resource_version

    def _watch_from(self, resource_version: str, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self._watch = watch.Watch()
            for event in self._watch.stream(
                self._list_func,
                resource_version=resource_version,
                timeout_seconds=self._watch_timeout,
                **self._list_kwargs,
            ):
                if stop_event.is_set():
                    self._watch.stop()
                    break
                event_type = event.get("type")
                obj = event.get("raw_object")
                if event_type == "ERROR":
                    code = (obj or {}).get("code")
                    if code == 410:
                        # History expired; relist
                        raise ApiException(status=410, reason="Gone")
                    raise ApiException(status=code or 500, reason=(obj or {}).get("message"))
                if not isinstance(obj, dict):
                    continue
                resource_version = (obj.get("metadata") or {}).get(
                    "resourceVersion", resource_version
                )
                if event_type == EVENT_DELETED:
                    self.cache.delete(obj)
                elif event_type in (EVENT_ADDED, EVENT_MODIFIED):
                    self.cache.upsert(obj)
                else:
                    # BOOKMARK and friends carry no object change
                    continue
                self._dispatch(WatchEvent(self.kind, event_type, obj))

    def _dispatch(self, event: WatchEvent) -> None:
        metrics.WATCH_EVENTS_TOTAL.labels(kind=self.kind, type=event.type).inc()
        for handler in self._handlers:
            try:
                handler(event)
            except Exception:
                logger.error(
                    "Event handler failed",
                    event="watch",
                    reason="HandlerFailed",
                    kind=self.kind,
                    exc_info=True,
                )
