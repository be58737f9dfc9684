"""Kubernetes API access for At objects and their execution Pods.

All methods raise ``kubernetes.client.exceptions.ApiException`` on failure;
callers inspect ``status`` (404, 409, ...) the same way for every call.
"""

from __future__ import annotations

import json
from typing import Any

from kubernetes import client

from .constants import API_GROUP, API_VERSION, FIELD_MANAGER, PLURAL_AT


def _decode(response: Any) -> dict[str, Any]:
    return json.loads(response.data)


class KubeStore:
    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self._core = core_api or client.CoreV1Api()
        self._custom = custom_api or client.CustomObjectsApi()
        self._timeout = request_timeout

    def _kwargs(self) -> dict[str, Any]:
        return {"_request_timeout": self._timeout} if self._timeout else {}

    def get_pod(self, namespace: str, name: str) -> dict[str, Any]:
        response = self._core.read_namespaced_pod(
            name, namespace, _preload_content=False, **self._kwargs()
        )
        return _decode(response)

    def create_pod(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        response = self._core.create_namespaced_pod(
            namespace=namespace,
            body=body,
            field_manager=FIELD_MANAGER,
            _preload_content=False,
            **self._kwargs(),
        )
        return _decode(response)

    def update_status(self, at: dict[str, Any]) -> dict[str, Any]:
        """Replace the status subresource of ``at`` with its current status."""
        metadata = at.get("metadata") or {}
        return self._custom.replace_namespaced_custom_object_status(
            group=API_GROUP,
            version=API_VERSION,
            namespace=metadata.get("namespace"),
            plural=PLURAL_AT,
            name=metadata.get("name"),
            body=at,
            field_manager=FIELD_MANAGER,
            **self._kwargs(),
        )

    def list_ats(self, namespace: str | None = None) -> list[dict[str, Any]]:
        if namespace:
            result = self._custom.list_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=PLURAL_AT,
                **self._kwargs(),
            )
        else:
            result = self._custom.list_cluster_custom_object(
                group=API_GROUP, version=API_VERSION, plural=PLURAL_AT, **self._kwargs()
            )
        return list(result.get("items", []))
