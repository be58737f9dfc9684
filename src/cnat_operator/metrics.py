from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

RECONCILE_TOTAL = Counter(
    "cnat_operator_reconcile_total",
    "Number of reconciliations",
    labelnames=("kind", "result"),
)

RECONCILE_DURATION = Histogram(
    "cnat_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    labelnames=("kind",),
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

PHASE_TRANSITIONS_TOTAL = Counter(
    "cnat_operator_phase_transitions_total",
    "Number of At phase transitions",
    labelnames=("from_phase", "to_phase"),
)

WORKQUEUE_DEPTH = Gauge(
    "cnat_operator_workqueue_depth",
    "Current depth of the workqueue",
    labelnames=("name",),
)

WORKQUEUE_ADDS_TOTAL = Counter(
    "cnat_operator_workqueue_adds_total",
    "Total number of keys added to the workqueue",
    labelnames=("name",),
)

WORKQUEUE_RETRIES_TOTAL = Counter(
    "cnat_operator_workqueue_retries_total",
    "Total number of rate-limited requeues",
    labelnames=("name",),
)

POD_RUNS_TOTAL = Counter(
    "cnat_operator_pod_runs_total",
    "Execution pods observed in a terminal phase",
    labelnames=("result",),
)

WATCH_EVENTS_TOTAL = Counter(
    "cnat_operator_watch_events_total",
    "Watch notifications received by the informers",
    labelnames=("kind", "type"),
)
