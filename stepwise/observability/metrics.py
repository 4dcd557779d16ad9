"""Prometheus metrics for plan execution.

Labels deliberately exclude owner and subject keys to keep cardinality
bounded.
"""

from prometheus_client import Counter, Histogram

PLANS_CREATED = Counter(
    "stepwise_plans_created_total",
    "Total number of plans created",
)

TRIGGERS_HANDLED = Counter(
    "stepwise_triggers_handled_total",
    "Plan triggers handled by the execution engine",
    labelnames=["outcome"],
)

STEP_EXECUTION_LATENCY = Histogram(
    "stepwise_step_execution_latency_seconds",
    "Latency of step executor calls",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

STEP_EXECUTION_FAILURES = Counter(
    "stepwise_step_execution_failures_total",
    "Step executor calls that raised or timed out",
    labelnames=["reason"],
)

COMMIT_CONFLICTS = Counter(
    "stepwise_commit_conflicts_total",
    "Step commits rejected because the plan changed since it was loaded",
)

TRIGGERS_ACKNOWLEDGED = Counter(
    "stepwise_triggers_acknowledged_total",
    "Triggers acknowledged by the queue worker",
)

TRIGGERS_DEAD_LETTERED = Counter(
    "stepwise_triggers_dead_lettered_total",
    "Triggers moved to the dead-letter set after exhausting deliveries",
    labelnames=["queue"],
)
