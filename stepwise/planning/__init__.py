"""Deferred multi-step plans.

Components:
- PlanStore: durable plan documents with typed patches
- DelayScheduler: delay queue carrying plan triggers
- PlanExecutionEngine: advances one plan per delivered trigger
- PlanningService / PlanningTools: API surface for agent runtimes
- PlanQueueWorker: consumes the queue and drives the engine
"""

from stepwise.planning.engine import PlanExecutionEngine
from stepwise.planning.errors import (
    InvalidArgumentError,
    LeaseError,
    PlanConflictError,
    PlanningError,
    PlanVersionConflictError,
    QueueConnectionError,
    QueueError,
    StepExecutionError,
    StoreConnectionError,
    StoreError,
)
from stepwise.planning.executors import (
    FunctionStepExecutor,
    MockStepExecutor,
    StepExecutionRequest,
    StepExecutor,
)
from stepwise.planning.lease import (
    InMemoryPlanLease,
    PlanLease,
    RedisPlanLease,
    build_plan_key,
)
from stepwise.planning.models import (
    AppendHistory,
    CompletionSource,
    DeliveryHandle,
    Plan,
    PlanPatch,
    PlanTrigger,
    QueuedTrigger,
    SetStepCompleted,
    Step,
    StepSpec,
    TriggerOutcome,
    TriggerResult,
)
from stepwise.planning.queues import (
    DelayScheduler,
    InMemoryDelayScheduler,
    RedisDelayScheduler,
)
from stepwise.planning.service import PlanningService
from stepwise.planning.stores import InMemoryPlanStore, PlanStore, RedisPlanStore
from stepwise.planning.tools import PlanningTools, ToolContext
from stepwise.planning.worker import PlanQueueWorker

__all__ = [
    # Models
    "Plan",
    "Step",
    "StepSpec",
    "PlanPatch",
    "SetStepCompleted",
    "AppendHistory",
    "CompletionSource",
    "PlanTrigger",
    "DeliveryHandle",
    "QueuedTrigger",
    "TriggerOutcome",
    "TriggerResult",
    # Stores
    "PlanStore",
    "InMemoryPlanStore",
    "RedisPlanStore",
    # Queues
    "DelayScheduler",
    "InMemoryDelayScheduler",
    "RedisDelayScheduler",
    # Leases
    "PlanLease",
    "InMemoryPlanLease",
    "RedisPlanLease",
    "build_plan_key",
    # Executors
    "StepExecutor",
    "StepExecutionRequest",
    "FunctionStepExecutor",
    "MockStepExecutor",
    # Engine and API
    "PlanExecutionEngine",
    "PlanningService",
    "PlanningTools",
    "ToolContext",
    "PlanQueueWorker",
    # Errors
    "PlanningError",
    "InvalidArgumentError",
    "StepExecutionError",
    "StoreError",
    "StoreConnectionError",
    "PlanConflictError",
    "PlanVersionConflictError",
    "QueueError",
    "QueueConnectionError",
    "LeaseError",
]
