"""Planning tools exposed to a language-model agent.

Each tool is bound to the calling agent and user through a ToolContext, so
the model never supplies identity keys itself. Arguments are validated by
pydantic models, whose JSON schemas double as the tool parameter schemas.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stepwise.observability.logging import get_logger
from stepwise.planning.errors import InvalidArgumentError
from stepwise.planning.models import DeliveryHandle, Plan, StepSpec
from stepwise.planning.service import PlanningService

logger = get_logger(__name__)

ArgsT = TypeVar("ArgsT", bound=BaseModel)


@dataclass(frozen=True)
class ToolContext:
    """Identity of the conversation a tool call happens in."""

    owner_key: str  # Agent identity
    subject_key: str  # User identity

    def validate(self) -> None:
        if not self.owner_key or not self.owner_key.strip():
            raise InvalidArgumentError("Tool context has no agent identity")
        if not self.subject_key or not self.subject_key.strip():
            raise InvalidArgumentError("Tool context has no user identity")


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class StepArgs(_ToolArgs):
    description: str = Field(..., min_length=1, description="What to do in this step")
    delay_hours: float = Field(
        default=0.0,
        ge=0,
        description="Hours to wait after the previous step before running this one",
    )


class CreatePlanArgs(_ToolArgs):
    name: str = Field(..., min_length=1, description="Short name of the plan")
    steps: list[StepArgs] = Field(..., min_length=1, description="Steps in order")


class PlanIdArgs(_ToolArgs):
    plan_id: UUID = Field(..., description="Plan identifier")


class ScheduleNextStepArgs(_ToolArgs):
    plan_id: UUID = Field(..., description="Plan identifier")
    delay_hours: float = Field(..., ge=0, description="Hours until the next step runs")


class CompletePlanStepArgs(_ToolArgs):
    plan_id: UUID = Field(..., description="Plan identifier")
    step_number: int = Field(..., ge=1, description="1-based step number")


class PlanningToolDefinition(BaseModel):
    """Tool description handed to the model provider."""

    name: str
    description: str
    parameter_schema: dict[str, Any] = Field(default_factory=dict)


_TOOLS: dict[str, tuple[str, type[_ToolArgs]]] = {
    "create_plan": (
        "Create a plan of steps to carry out later, each after a delay in hours.",
        CreatePlanArgs,
    ),
    "get_plan": (
        "Get a plan with its steps and history.",
        PlanIdArgs,
    ),
    "schedule_message_for_next_step": (
        "Schedule the next pending step of a plan after a delay in hours.",
        ScheduleNextStepArgs,
    ),
    "plan_has_incomplete_steps": (
        "Check whether a plan still has steps to carry out.",
        PlanIdArgs,
    ),
    "complete_plan_step": (
        "Mark a step of a plan as completed.",
        CompletePlanStepArgs,
    ),
}


def _parse(model: type[ArgsT], arguments: dict[str, Any]) -> ArgsT:
    try:
        return model.model_validate(arguments)
    except ValidationError as e:
        raise InvalidArgumentError(f"Invalid tool arguments: {e}") from e


class PlanningTools:
    """Agent-facing wrappers around PlanningService."""

    def __init__(self, service: PlanningService):
        self._service = service

    def definitions(self) -> list[PlanningToolDefinition]:
        """Tool definitions with JSON schemas of their arguments."""
        return [
            PlanningToolDefinition(
                name=name,
                description=description,
                parameter_schema=model.model_json_schema(),
            )
            for name, (description, model) in _TOOLS.items()
        ]

    async def invoke(self, ctx: ToolContext, name: str, arguments: dict[str, Any]) -> Any:
        """Dispatch a tool call by name with raw model-supplied arguments.

        Raises:
            InvalidArgumentError: Unknown tool or invalid arguments
        """
        if name not in _TOOLS:
            raise InvalidArgumentError(f"Unknown planning tool: {name}")

        _, model = _TOOLS[name]
        args = _parse(model, arguments)

        logger.debug("planning_tool_invoked", tool_name=name)
        return await getattr(self, name)(ctx, **args.model_dump(mode="json"))

    async def create_plan(
        self,
        ctx: ToolContext,
        name: str,
        steps: list[dict[str, Any]],
    ) -> Plan:
        ctx.validate()
        args = _parse(CreatePlanArgs, {"name": name, "steps": steps})
        return await self._service.create_plan(
            name=args.name,
            subject_key=ctx.subject_key,
            owner_key=ctx.owner_key,
            steps=[StepSpec.from_hours(s.description, s.delay_hours) for s in args.steps],
        )

    async def get_plan(self, ctx: ToolContext, plan_id: str) -> Plan | None:
        ctx.validate()
        args = _parse(PlanIdArgs, {"plan_id": plan_id})
        return await self._service.get_plan(args.plan_id, ctx.owner_key)

    async def schedule_message_for_next_step(
        self,
        ctx: ToolContext,
        plan_id: str,
        delay_hours: float,
    ) -> DeliveryHandle | None:
        """Arm the plan's trigger; None if the plan is missing or finished."""
        ctx.validate()
        args = _parse(
            ScheduleNextStepArgs, {"plan_id": plan_id, "delay_hours": delay_hours}
        )
        return await self._service.schedule_next_step(
            args.plan_id,
            ctx.subject_key,
            ctx.owner_key,
            timedelta(hours=args.delay_hours),
        )

    async def plan_has_incomplete_steps(self, ctx: ToolContext, plan_id: str) -> bool:
        ctx.validate()
        args = _parse(PlanIdArgs, {"plan_id": plan_id})
        return await self._service.has_incomplete_steps(args.plan_id, ctx.owner_key)

    async def complete_plan_step(
        self,
        ctx: ToolContext,
        plan_id: str,
        step_number: int,
    ) -> bool:
        ctx.validate()
        args = _parse(
            CompletePlanStepArgs, {"plan_id": plan_id, "step_number": step_number}
        )
        return await self._service.complete_step(
            args.plan_id, ctx.owner_key, args.step_number
        )
