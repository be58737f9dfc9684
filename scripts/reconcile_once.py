#!/usr/bin/env python3
from __future__ import annotations

import argparse
from contextlib import suppress

from kubernetes import client, config

from cnat_operator.cache import ObjectCache, meta_namespace_key
from cnat_operator.events import EventRecorder
from cnat_operator.reconciler import Reconciler, RequeueAfter, RetryableError
from cnat_operator.store import KubeStore


def main() -> int:
    parser = argparse.ArgumentParser(description="Reconcile every At in a namespace once")
    parser.add_argument("--namespace", required=True)
    parser.add_argument("--image", default="busybox", help="image for execution pods")
    parser.add_argument("--no-events", action="store_true", help="do not post Kubernetes Events")
    args = parser.parse_args()

    # Load kube config (in-cluster or local)
    with suppress(Exception):
        config.load_incluster_config()
    with suppress(Exception):
        config.load_kube_config()

    core_api = client.CoreV1Api()
    store = KubeStore(core_api, client.CustomObjectsApi())

    cache = ObjectCache()
    cache.replace(store.list_ats(args.namespace))
    recorder = None if args.no_events else EventRecorder(core_api, component="cnat-reconcile-once")
    reconciler = Reconciler(cache, store, recorder, image=args.image)

    failures = 0
    for at in cache.list():
        key = meta_namespace_key(at)
        result = reconciler.reconcile(key)
        if isinstance(result, RetryableError):
            failures += 1
            print(f"{key}: error: {result.error}")
        elif isinstance(result, RequeueAfter):
            print(f"{key}: waiting {result.delay:.0f}s for schedule")
        else:
            print(f"{key}: ok")

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
