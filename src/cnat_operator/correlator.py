from __future__ import annotations

from typing import Any, Protocol

from .cache import (
    EVENT_DELETED,
    DeletedFinalStateUnknown,
    ObjectCache,
    WatchEvent,
    meta_namespace_key,
)
from .constants import KIND_AT, KIND_POD
from .logging import logger


class Enqueuer(Protocol):
    def add(self, item: Any) -> None: ...


def get_controller_of(obj: dict[str, Any]) -> dict[str, Any] | None:
    """Return the owner reference flagged as controller, if any."""
    owner_refs = (obj.get("metadata") or {}).get("ownerReferences") or []
    for ref in owner_refs:
        if isinstance(ref, dict) and ref.get("controller"):
            return ref
    return None


def _is_pod(obj: Any) -> bool:
    return (
        isinstance(obj, dict)
        and isinstance(obj.get("metadata"), dict)
        and obj.get("kind", KIND_POD) == KIND_POD
    )


class EventCorrelator:
    """Maps watch notifications on At objects and their Pods to At keys."""

    def __init__(self, queue: Enqueuer, at_cache: ObjectCache) -> None:
        self._queue = queue
        self._at_cache = at_cache

    def handle(self, event: WatchEvent) -> None:
        if event.kind == KIND_AT:
            if event.type != EVENT_DELETED:
                self.enqueue_at(event.obj)
        elif event.kind == KIND_POD:
            self.enqueue_pod(event.obj)
        else:
            logger.debug("Ignoring event for unhandled kind", event="watch", kind=event.kind)

    def enqueue_at(self, obj: Any) -> None:
        try:
            key = meta_namespace_key(obj)
        except ValueError as e:
            logger.error(f"Cannot derive key for At: {e}", controller=KIND_AT, event="enqueue")
            return
        logger.debug("Enqueuing At", controller=KIND_AT, resource=key, event="enqueue")
        self._queue.add(key)

    def enqueue_pod(self, obj: Any) -> None:
        """Enqueue the At owning ``obj`` when the Pod is controlled by one."""
        pod = obj
        if not _is_pod(pod):
            if not isinstance(obj, DeletedFinalStateUnknown):
                logger.error(
                    "Error decoding pod, invalid type",
                    controller=KIND_AT,
                    event="enqueue",
                    reason="InvalidObject",
                    object_type=type(obj).__name__,
                )
                return
            pod = obj.obj
            if not _is_pod(pod):
                logger.error(
                    "Error decoding pod tombstone, invalid type",
                    controller=KIND_AT,
                    resource=obj.key,
                    event="enqueue",
                    reason="InvalidTombstone",
                    object_type=type(pod).__name__,
                )
                return
            logger.debug(
                "Recovered deleted pod from tombstone",
                controller=KIND_AT,
                resource=obj.key,
                event="enqueue",
            )

        owner_ref = get_controller_of(pod)
        if owner_ref is None or owner_ref.get("kind") != KIND_AT:
            return

        metadata = pod["metadata"]
        namespace = metadata.get("namespace", "")
        at = self._at_cache.get(namespace, owner_ref.get("name", ""))
        if at is None:
            logger.debug(
                "Ignoring orphaned pod",
                controller=KIND_AT,
                resource=f"{namespace}/{metadata.get('name')}",
                event="enqueue",
                owner_name=owner_ref.get("name"),
            )
            return

        logger.info(
            "Enqueuing At because pod changed",
            controller=KIND_AT,
            resource=f"{namespace}/{owner_ref.get('name')}",
            event="enqueue",
            pod_name=metadata.get("name"),
        )
        self.enqueue_at(at)
