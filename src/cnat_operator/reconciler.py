from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import UTC, datetime
from time import monotonic
from typing import Any, Callable, Protocol, Union

from kubernetes.client.exceptions import ApiException

from . import metrics
from .builders.pod_builder import DEFAULT_IMAGE, build_execution_pod
from .cache import ObjectCache, split_meta_namespace_key
from .constants import (
    KIND_AT,
    PHASE_DONE,
    PHASE_PENDING,
    PHASE_RUNNING,
    POD_SUCCEEDED,
    POD_TERMINAL_PHASES,
)
from .logging import logger
from .utils.schedule import time_until_schedule


@dataclass(frozen=True)
class Done:
    """Nothing further to do until the next watch event."""


@dataclass(frozen=True)
class RetryableError:
    error: Exception


@dataclass(frozen=True)
class RequeueAfter:
    delay: float


Result = Union[Done, RetryableError, RequeueAfter]


class Store(Protocol):
    def get_pod(self, namespace: str, name: str) -> dict[str, Any]: ...

    def create_pod(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def update_status(self, at: dict[str, Any]) -> dict[str, Any]: ...


class Recorder(Protocol):
    def emit(
        self, at: dict[str, Any], *, reason: str, message: str, type_: str = "Normal"
    ) -> None: ...


class _NullRecorder:
    def emit(
        self, at: dict[str, Any], *, reason: str, message: str, type_: str = "Normal"
    ) -> None:
        return


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Reconciler:
    """Drives a single At through PENDING -> RUNNING -> DONE."""

    def __init__(
        self,
        at_cache: ObjectCache,
        store: Store,
        recorder: Recorder | None = None,
        *,
        image: str = DEFAULT_IMAGE,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._cache = at_cache
        self._store = store
        self._recorder = recorder or _NullRecorder()
        self._image = image
        self._now = now

    def reconcile(self, key: str) -> Result:
        started_at = monotonic()
        try:
            result = self._sync(key)
        except Exception as e:
            logger.error(
                f"At reconciliation failed: {e}",
                controller=KIND_AT,
                resource=key,
                event="reconcile",
                reason="ReconcileFailed",
                exc_info=True,
            )
            result = RetryableError(e)
        finally:
            metrics.RECONCILE_DURATION.labels(kind=KIND_AT).observe(monotonic() - started_at)

        outcome = "error" if isinstance(result, RetryableError) else "success"
        metrics.RECONCILE_TOTAL.labels(kind=KIND_AT, result=outcome).inc()
        return result

    def _sync(self, key: str) -> Result:
        logger.info(
            "Starting At reconciliation",
            controller=KIND_AT,
            resource=key,
            event="reconcile",
            reason="ReconcileStarted",
        )
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError:
            logger.error(
                f"Invalid resource key: {key}",
                controller=KIND_AT,
                resource=key,
                event="reconcile",
                reason="InvalidKey",
            )
            return Done()

        original = self._cache.get(namespace, name)
        if original is None:
            logger.info(
                "At in work queue no longer exists",
                controller=KIND_AT,
                resource=key,
                event="reconcile",
                reason="NotFound",
            )
            return Done()

        # The cached object is shared with other workers and the informer
        instance = copy.deepcopy(original)
        uid = (instance.get("metadata") or {}).get("uid")
        spec = instance.get("spec") or {}
        status = instance.get("status") or {}
        instance["status"] = status
        if not status.get("phase"):
            status["phase"] = PHASE_PENDING

        phase = status["phase"]
        if phase == PHASE_PENDING:
            schedule = spec.get("schedule", "")
            try:
                delay = time_until_schedule(schedule, now=self._now())
            except ValueError as e:
                logger.error(
                    f"Schedule parsing failed: {e}",
                    controller=KIND_AT,
                    resource=key,
                    uid=uid,
                    event="reconcile",
                    reason="ScheduleInvalid",
                    schedule=schedule,
                )
                self._recorder.emit(
                    instance,
                    reason="ScheduleInvalid",
                    message=f"Cannot parse schedule {schedule!r}: {e}",
                    type_="Warning",
                )
                return RetryableError(e)

            if delay > 0:
                logger.info(
                    "Schedule not reached yet",
                    controller=KIND_AT,
                    resource=key,
                    uid=uid,
                    event="reconcile",
                    reason="Waiting",
                    delay_seconds=delay,
                )
                return RequeueAfter(delay)

            logger.info(
                "Schedule reached, ready to execute",
                controller=KIND_AT,
                resource=key,
                uid=uid,
                event="reconcile",
                reason="ScheduleReached",
                command=spec.get("command"),
            )
            self._recorder.emit(
                instance,
                reason="ScheduleReached",
                message=f"Schedule {schedule} reached, executing {spec.get('command')!r}",
            )
            status["phase"] = PHASE_RUNNING

        elif phase == PHASE_RUNNING:
            pod = build_execution_pod(instance, image=self._image)
            pod_name = pod["metadata"]["name"]
            try:
                found = self._store.get_pod(namespace, pod_name)
            except ApiException as e:
                if e.status != 404:
                    return RetryableError(e)
                result = self._create_pod(key, instance, namespace, pod)
                if result is not None:
                    return result
            else:
                pod_phase = (found.get("status") or {}).get("phase")
                if pod_phase not in POD_TERMINAL_PHASES:
                    # The pod watch re-enqueues us when this changes
                    return Done()

                pod_status = found.get("status") or {}
                succeeded = pod_phase == POD_SUCCEEDED
                logger.info(
                    "Container terminated",
                    controller=KIND_AT,
                    resource=key,
                    uid=uid,
                    event="reconcile",
                    reason="PodSucceeded" if succeeded else "PodFailed",
                    pod_name=pod_name,
                    pod_reason=pod_status.get("reason"),
                    pod_message=pod_status.get("message"),
                )
                metrics.POD_RUNS_TOTAL.labels(
                    result="succeeded" if succeeded else "failed"
                ).inc()
                self._recorder.emit(
                    instance,
                    reason="PodSucceeded" if succeeded else "PodFailed",
                    message=f"Pod '{pod_name}' finished with phase {pod_phase}",
                    type_="Normal" if succeeded else "Warning",
                )
                status["phase"] = PHASE_DONE

        elif phase == PHASE_DONE:
            logger.debug(
                "At already done", controller=KIND_AT, resource=key, uid=uid, event="reconcile"
            )
            return Done()

        else:
            logger.warning(
                f"Unrecognized phase {phase!r}, nothing to do",
                controller=KIND_AT,
                resource=key,
                uid=uid,
                event="reconcile",
                reason="UnknownPhase",
            )
            return Done()

        if instance != original:
            try:
                self._store.update_status(instance)
            except ApiException as e:
                logger.warning(
                    f"Status update failed: {e.reason}",
                    controller=KIND_AT,
                    resource=key,
                    uid=uid,
                    event="reconcile",
                    reason="StatusUpdateFailed",
                    status_code=e.status,
                )
                return RetryableError(e)
            if status["phase"] != phase:
                metrics.PHASE_TRANSITIONS_TOTAL.labels(
                    from_phase=phase, to_phase=status["phase"]
                ).inc()

        logger.info(
            "At reconciliation completed successfully",
            controller=KIND_AT,
            resource=key,
            uid=uid,
            event="reconcile",
            reason="ReconcileSucceeded",
            phase=status["phase"],
        )
        return Done()

    def _create_pod(
        self, key: str, instance: dict[str, Any], namespace: str, pod: dict[str, Any]
    ) -> Result | None:
        """Create the execution pod; returns a Result only when reconcile must stop."""
        pod_name = pod["metadata"]["name"]
        try:
            self._store.create_pod(namespace, pod)
        except ApiException as e:
            if e.status == 409:
                logger.info(
                    "Pod already exists, waiting for its status",
                    controller=KIND_AT,
                    resource=key,
                    event="reconcile",
                    reason="PodExists",
                    pod_name=pod_name,
                )
                return None
            logger.warning(
                f"Pod creation failed: {e.reason}",
                controller=KIND_AT,
                resource=key,
                event="reconcile",
                reason="PodCreateFailed",
                pod_name=pod_name,
                status_code=e.status,
            )
            return RetryableError(e)

        logger.info(
            "Pod launched",
            controller=KIND_AT,
            resource=key,
            event="reconcile",
            reason="PodCreated",
            pod_name=pod_name,
        )
        self._recorder.emit(instance, reason="PodCreated", message=f"Pod '{pod_name}' created")
        return None
