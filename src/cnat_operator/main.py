from __future__ import annotations

import threading
from contextlib import suppress
from typing import Any

import kopf
from kubernetes import client, config
from prometheus_client import start_http_server

from . import logging as structured_logging
from .cache import ObjectCache
from .config import OperatorConfig
from .constants import API_GROUP, API_VERSION, KIND_AT, KIND_POD, PLURAL_AT
from .controller import CacheSyncError, Controller
from .correlator import EventCorrelator
from .events import EventRecorder
from .informer import Informer
from .reconciler import Reconciler
from .store import KubeStore
from .workqueue import RateLimitingQueue

SHUTDOWN_TIMEOUT_SECONDS = 30.0


class Operator:
    """Wires informers, queue, reconciler and worker pool together."""

    def __init__(
        self,
        cfg: OperatorConfig,
        core_api: client.CoreV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
    ) -> None:
        self.cfg = cfg
        core_api = core_api or client.CoreV1Api()
        custom_api = custom_api or client.CustomObjectsApi()

        self.at_cache = ObjectCache()
        self.pod_cache = ObjectCache()
        self.queue = RateLimitingQueue(name="ats")
        self.correlator = EventCorrelator(self.queue, self.at_cache)

        # Pods are watched unfiltered; an adopted pod need not carry our labels
        if cfg.watch_namespace:
            at_list = custom_api.list_namespaced_custom_object
            at_kwargs: dict[str, Any] = {
                "group": API_GROUP,
                "version": API_VERSION,
                "namespace": cfg.watch_namespace,
                "plural": PLURAL_AT,
            }
            pod_list = core_api.list_namespaced_pod
            pod_kwargs: dict[str, Any] = {"namespace": cfg.watch_namespace}
        else:
            at_list = custom_api.list_cluster_custom_object
            at_kwargs = {"group": API_GROUP, "version": API_VERSION, "plural": PLURAL_AT}
            pod_list = core_api.list_pod_for_all_namespaces
            pod_kwargs = {}

        self.at_informer = Informer(
            KIND_AT, at_list, self.at_cache, list_kwargs=at_kwargs, watch_timeout=cfg.watch_timeout
        )
        self.pod_informer = Informer(
            KIND_POD,
            pod_list,
            self.pod_cache,
            list_kwargs=pod_kwargs,
            watch_timeout=cfg.watch_timeout,
        )
        self.at_informer.add_handler(self.correlator.handle)
        self.pod_informer.add_handler(self.correlator.handle)

        self.reconciler = Reconciler(
            self.at_cache,
            KubeStore(core_api, custom_api, request_timeout=cfg.request_timeout),
            EventRecorder(core_api),
            image=cfg.pod_image,
        )
        self.controller = Controller(
            self.queue,
            self.reconciler,
            synced=[self.at_informer.has_synced, self.pod_informer.has_synced],
        )

        self.stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        for informer in (self.at_informer, self.pod_informer):
            self._threads.append(
                threading.Thread(
                    target=informer.run,
                    args=(self.stop_event,),
                    name=f"{informer.kind.lower()}-informer",
                    daemon=True,
                )
            )
        self._threads.append(
            threading.Thread(target=self._run_controller, name="controller", daemon=True)
        )
        for thread in self._threads:
            thread.start()

    def _run_controller(self) -> None:
        try:
            self.controller.run(self.cfg.workers, self.stop_event)
        except CacheSyncError as e:
            structured_logging.logger.error(
                f"Controller did not start: {e}",
                controller=KIND_AT,
                event="run",
                reason="CacheSyncFailed",
            )

    def stop(self, timeout: float = SHUTDOWN_TIMEOUT_SECONDS) -> None:
        self.stop_event.set()
        for informer in (self.at_informer, self.pod_informer):
            informer.stop()
        for thread in self._threads:
            thread.join(timeout)

    def synced(self) -> bool:
        return self.at_informer.has_synced() and self.pod_informer.has_synced()


_operator: Operator | None = None


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    global _operator

    structured_logging.setup_structured_logging()
    cfg = OperatorConfig.from_env()

    # No kopf-managed resources: the controller runs its own watches
    settings.peering.standalone = True
    settings.posting.level = 0
    settings.networking.request_timeout = cfg.request_timeout

    with suppress(Exception):
        start_http_server(cfg.metrics_port)

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()

    _operator = Operator(cfg)
    _operator.start()
    structured_logging.logger.info(
        "Starting cnat controller",
        controller=KIND_AT,
        event="startup",
        workers=cfg.workers,
        namespace=cfg.watch_namespace or "*",
    )


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    global _operator
    if _operator is None:
        return
    structured_logging.logger.info("Stopping cnat controller", controller=KIND_AT, event="cleanup")
    _operator.stop()
    _operator = None


@kopf.on.probe(id="cachesSynced")
def caches_synced(**_: Any) -> bool:
    return _operator is not None and _operator.synced()


@kopf.on.probe(id="workqueueDepth")
def workqueue_depth(**_: Any) -> int:
    return len(_operator.queue) if _operator is not None else 0
