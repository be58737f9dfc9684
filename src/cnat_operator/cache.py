"""Local mirror of watched objects, keyed by ``namespace/name``.

Informers write to an :class:`ObjectCache`; the correlator and reconciler only
read from it. Objects handed out are the cache's own copies and must not be
mutated by callers.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Stand-in for an object whose deletion was missed by the watch.

    ``obj`` is the last state the cache held, which may be stale.
    """

    key: str
    obj: Any


@dataclass(frozen=True)
class WatchEvent:
    kind: str
    type: str
    obj: Any


def meta_namespace_key(obj: Any) -> str:
    """Return ``namespace/name`` (or ``name`` when cluster-scoped) for an object.

    Tombstones resolve to the key they were recorded under.
    Raises ValueError when the object carries no name.
    """
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key
    if not isinstance(obj, dict):
        raise ValueError(f"object has no metadata: {obj!r}")
    metadata = obj.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        raise ValueError("object has no metadata.name")
    namespace = metadata.get("namespace")
    return f"{namespace}/{name}" if namespace else name


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Split ``namespace/name`` into its parts.

    A bare ``name`` yields an empty namespace. Raises ValueError otherwise.
    """
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[0] and parts[1]:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


class ObjectCache:
    """Thread-safe store of object dicts."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._items: dict[str, dict[str, Any]] = {}

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        key = f"{namespace}/{name}" if namespace else name
        return self.get_by_key(key)

    def get_by_key(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            return self._items.get(key)

    def list(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._items.values())

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def upsert(self, obj: dict[str, Any]) -> dict[str, Any] | None:
        """Insert or replace an object; returns the previous version if any."""
        key = meta_namespace_key(obj)
        with self._lock:
            old = self._items.get(key)
            self._items[key] = obj
            return old

    def delete(self, obj: dict[str, Any]) -> dict[str, Any] | None:
        key = meta_namespace_key(obj)
        with self._lock:
            return self._items.pop(key, None)

    def replace(self, objs: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
        """Swap the whole content for ``objs``.

        Returns the objects that were present before but are absent from
        ``objs``, keyed by their cache key.
        """
        fresh = {meta_namespace_key(obj): obj for obj in objs}
        with self._lock:
            vanished = {k: v for k, v in self._items.items() if k not in fresh}
            self._items = fresh
        return vanished

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
