"""Step executors."""

from stepwise.planning.executors.base import StepExecutionRequest, StepExecutor
from stepwise.planning.executors.function import FunctionStepExecutor, StepHandler
from stepwise.planning.executors.mock import MockStepExecutor

__all__ = [
    "StepExecutionRequest",
    "StepExecutor",
    "FunctionStepExecutor",
    "StepHandler",
    "MockStepExecutor",
]
