from __future__ import annotations

from typing import Any

from kubernetes import client

from .constants import API_GROUP_VERSION, KIND_AT
from .logging import logger


class EventRecorder:
    """Posts Kubernetes Events against At objects. Events are best-effort."""

    def __init__(self, core_api: client.CoreV1Api | None = None, component: str = "cnat-operator"):
        self._core = core_api
        self.component = component

    def emit(
        self,
        at: dict[str, Any],
        *,
        reason: str,
        message: str,
        type_: str = "Normal",
    ) -> None:
        metadata = at.get("metadata") or {}
        name = metadata.get("name", "")
        namespace = metadata.get("namespace", "")
        try:
            v1 = self._core or client.CoreV1Api()
            involved = client.V1ObjectReference(
                api_version=at.get("apiVersion") or API_GROUP_VERSION,
                kind=KIND_AT,
                name=name,
                namespace=namespace,
                uid=metadata.get("uid"),
            )
            event = client.CoreV1Event(
                metadata=client.V1ObjectMeta(generate_name=f"{name}-"),
                type=type_,
                reason=reason,
                message=message,
                involved_object=involved,
                source=client.V1EventSource(component=self.component),
            )
            v1.create_namespaced_event(namespace=namespace, body=event)
        except Exception as e:
            logger.debug(
                f"Failed to record event: {e}",
                controller=KIND_AT,
                resource=f"{namespace}/{name}",
                event="record",
                reason=reason,
            )
