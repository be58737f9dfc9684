"""
Pytest configuration and fixtures for integration tests.

The tests run against the current kubeconfig context (for example a kind
cluster) and are skipped when no cluster is reachable.
"""

import subprocess
import uuid
from typing import Any, Generator

import pytest
from kubernetes import client, config

from cnat_operator.constants import API_GROUP, API_VERSION, KIND_AT, PLURAL_AT

from kube_helpers import wait_for_crd_established

AT_CRD: dict[str, Any] = {
    "apiVersion": "apiextensions.k8s.io/v1",
    "kind": "CustomResourceDefinition",
    "metadata": {"name": f"{PLURAL_AT}.{API_GROUP}"},
    "spec": {
        "group": API_GROUP,
        "scope": "Namespaced",
        "names": {"kind": KIND_AT, "plural": PLURAL_AT, "singular": "at", "listKind": "AtList"},
        "versions": [
            {
                "name": API_VERSION,
                "served": True,
                "storage": True,
                "subresources": {"status": {}},
                "schema": {
                    "openAPIV3Schema": {
                        "type": "object",
                        "properties": {
                            "spec": {
                                "type": "object",
                                "properties": {
                                    "schedule": {"type": "string"},
                                    "command": {"type": "string"},
                                },
                            },
                            "status": {
                                "type": "object",
                                "properties": {"phase": {"type": "string"}},
                            },
                        },
                    }
                },
            }
        ],
    },
}


@pytest.fixture(scope="session")
def kind_available():
    """Check if kind is available."""
    try:
        subprocess.run(["kind", "version"], capture_output=True, check=True)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError):
        pytest.skip("kind not available")


@pytest.fixture(scope="session")
def kube_cluster(kind_available) -> None:
    """Load kubeconfig and install the At CRD."""
    try:
        config.load_kube_config()
        client.VersionApi().get_code()
    except Exception as e:
        pytest.skip(f"no reachable cluster: {e}")

    ext_api = client.ApiextensionsV1Api()
    try:
        ext_api.create_custom_resource_definition(body=AT_CRD)
    except client.exceptions.ApiException as e:
        if e.status != 409:
            raise
    wait_for_crd_established(AT_CRD["metadata"]["name"])


@pytest.fixture
def test_namespace(kube_cluster) -> Generator[str, None, None]:
    name = f"cnat-test-{uuid.uuid4().hex[:8]}"
    v1 = client.CoreV1Api()
    v1.create_namespace(body=client.V1Namespace(metadata=client.V1ObjectMeta(name=name)))
    yield name
    v1.delete_namespace(name=name)
