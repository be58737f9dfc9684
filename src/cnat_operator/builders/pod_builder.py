from __future__ import annotations

from typing import Any

from ..constants import (
    API_GROUP_VERSION,
    KIND_AT,
    LABEL_MANAGED_BY,
    LABEL_OWNER_KIND,
    LABEL_OWNER_NAME,
    LABEL_OWNER_UID,
    POD_NAME_SUFFIX,
)

DEFAULT_IMAGE = "busybox"


def pod_name_for(at_name: str) -> str:
    return f"{at_name}{POD_NAME_SUFFIX}"


def build_owner_reference(at: dict[str, Any]) -> dict[str, Any]:
    """Controller reference pointing from a Pod back to its At."""
    metadata = at.get("metadata") or {}
    return {
        "apiVersion": at.get("apiVersion") or API_GROUP_VERSION,
        "kind": KIND_AT,
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def build_execution_pod(at: dict[str, Any], *, image: str = DEFAULT_IMAGE) -> dict[str, Any]:
    """Render the one-shot Pod that runs ``spec.command`` for an At.

    The name is derived from the At's name, so rendering is deterministic and
    the result doubles as the lookup key for create-if-absent. This function
    is pure and safe to unit-test.
    """
    metadata = at.get("metadata") or {}
    spec = at.get("spec") or {}
    name: str = metadata.get("name", "")
    namespace: str = metadata.get("namespace", "")

    labels = {
        "app": name,
        LABEL_MANAGED_BY: "cnat-operator",
        LABEL_OWNER_KIND: KIND_AT,
        LABEL_OWNER_NAME: f"{namespace}.{name}",
    }
    if metadata.get("uid"):
        labels[LABEL_OWNER_UID] = metadata["uid"]

    command: list[str] = (spec.get("command") or "").split()

    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": pod_name_for(name),
            "namespace": namespace,
            "labels": labels,
            "ownerReferences": [build_owner_reference(at)],
        },
        "spec": {
            "restartPolicy": "OnFailure",
            "containers": [
                {
                    "name": "busybox",
                    "image": image,
                    **({"command": command} if command else {}),
                }
            ],
        },
    }
