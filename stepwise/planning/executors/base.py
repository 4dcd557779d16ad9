"""Step executor interface.

The step executor performs the work a step describes. In an agent runtime
this means running one more reasoning turn with the step description as the
prompt and the plan history as continuity context.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from pydantic import BaseModel, Field


class StepExecutionRequest(BaseModel):
    """Everything an executor gets to perform one step."""

    plan_id: UUID
    plan_name: str
    position: int = Field(..., ge=1)
    description: str = Field(..., description="Work to perform")
    history: list[str] = Field(default_factory=list, description="Plan history so far")
    subject_key: str = Field(..., description="User the plan runs on behalf of")
    owner_key: str = Field(..., description="Owning agent identity")


class StepExecutor(ABC):
    """Abstract interface for step executors.

    Implementations return free text that becomes the step's history entry,
    and raise on failure. Latency and failure modes are opaque to the engine.
    """

    @property
    @abstractmethod
    def executor_name(self) -> str:
        """Return the executor name for logging."""
        pass

    @abstractmethod
    async def execute(self, request: StepExecutionRequest) -> str:
        """Perform one step.

        Args:
            request: Step description, history and identities

        Returns:
            Free-text outcome to append to the plan history
        """
        pass
