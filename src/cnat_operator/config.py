from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .builders.pod_builder import DEFAULT_IMAGE

WORKERS_ENV = "CNAT_WORKERS"
WATCH_NAMESPACE_ENV = "CNAT_WATCH_NAMESPACE"
METRICS_PORT_ENV = "CNAT_METRICS_PORT"
POD_IMAGE_ENV = "CNAT_POD_IMAGE"
WATCH_TIMEOUT_ENV = "CNAT_WATCH_TIMEOUT_SECONDS"
REQUEST_TIMEOUT_ENV = "CNAT_REQUEST_TIMEOUT_SECONDS"


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class OperatorConfig:
    workers: int = 2
    watch_namespace: str | None = None
    metrics_port: int = 8080
    pod_image: str = DEFAULT_IMAGE
    watch_timeout: int = 60
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"{WORKERS_ENV} must be >= 1, got {self.workers}")
        if self.watch_timeout < 1:
            raise ValueError(f"{WATCH_TIMEOUT_ENV} must be >= 1, got {self.watch_timeout}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> OperatorConfig:
        env = os.environ if env is None else env
        return cls(
            workers=_int_env(env, WORKERS_ENV, cls.workers),
            watch_namespace=env.get(WATCH_NAMESPACE_ENV, "").strip() or None,
            metrics_port=_int_env(env, METRICS_PORT_ENV, cls.metrics_port),
            pod_image=env.get(POD_IMAGE_ENV, "").strip() or DEFAULT_IMAGE,
            watch_timeout=_int_env(env, WATCH_TIMEOUT_ENV, cls.watch_timeout),
            request_timeout=_float_env(env, REQUEST_TIMEOUT_ENV, cls.request_timeout),
        )
