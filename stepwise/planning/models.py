"""Plan domain models.

A Plan is an ordered, strictly linear list of Steps, each with a delay
measured from the previous step's completion. Plans are only ever mutated
through typed patch descriptors (SetStepCompleted, AppendHistory), which
every store backend applies the same way.
"""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Annotated, Literal, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(UTC)


def _non_negative(delay: timedelta) -> timedelta:
    if delay < timedelta(0):
        raise ValueError("delay must not be negative")
    return delay


class StepSpec(BaseModel):
    """Caller-supplied definition of a step, before positions are assigned."""

    description: str = Field(..., min_length=1, description="Work for the step executor")
    delay: timedelta = Field(
        default=timedelta(0),
        description="Wait after the previous step completes (or plan creation)",
    )

    @field_validator("delay")
    @classmethod
    def check_delay(cls, delay: timedelta) -> timedelta:
        return _non_negative(delay)

    @classmethod
    def from_hours(cls, description: str, delay_hours: float) -> "StepSpec":
        """Build a step spec from a delay expressed in (fractional) hours."""
        return cls(description=description, delay=timedelta(hours=delay_hours))


class CompletionSource(str, Enum):
    """Who marked a step completed."""

    ENGINE = "engine"  # Engine commit that also recorded the executor response
    MANUAL = "manual"  # Out-of-band completion, e.g. through a planning tool


class Step(BaseModel):
    """One unit of deferred work, embedded in a Plan."""

    position: int = Field(..., ge=1, description="1-based ordinal")
    description: str = Field(..., description="Work for the step executor")
    delay: timedelta = Field(default=timedelta(0), description="Wait before eligible")
    completed: bool = Field(default=False, description="Completion flag, never reverts")
    completed_at: datetime | None = Field(default=None, description="Completion time")
    completed_by: CompletionSource | None = Field(
        default=None, description="Source of the completion"
    )

    @field_validator("delay")
    @classmethod
    def check_delay(cls, delay: timedelta) -> timedelta:
        return _non_negative(delay)


class PatchResult(str, Enum):
    """Outcome of applying one patch to a plan."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"  # Already in the target state
    REJECTED = "rejected"  # Not applicable; the whole patch set is dropped


class SetStepCompleted(BaseModel):
    """Set the completion flag of the step at `position`."""

    model_config = ConfigDict(frozen=True)

    op: Literal["set_step_completed"] = "set_step_completed"
    position: int = Field(..., ge=1)
    completed_at: datetime = Field(default_factory=utc_now)
    completed_by: CompletionSource = CompletionSource.MANUAL

    def apply_to(self, plan: "Plan") -> PatchResult:
        step = plan.step_at(self.position)
        if step is None:
            return PatchResult.REJECTED
        if step.completed:
            # An engine commit claims an out-of-band completion once.
            if (
                self.completed_by == CompletionSource.ENGINE
                and step.completed_by != CompletionSource.ENGINE
            ):
                step.completed_by = CompletionSource.ENGINE
                return PatchResult.APPLIED
            return PatchResult.UNCHANGED
        # Completed steps form a prefix, so only the cursor step may flip.
        if self.position != plan.completed_count + 1:
            return PatchResult.REJECTED

        step.completed = True
        step.completed_at = self.completed_at
        step.completed_by = self.completed_by
        plan.completed_count += 1
        return PatchResult.APPLIED


class AppendHistory(BaseModel):
    """Append one entry to the plan history."""

    model_config = ConfigDict(frozen=True)

    op: Literal["append_history"] = "append_history"
    entry: str

    def apply_to(self, plan: "Plan") -> PatchResult:
        plan.history.append(self.entry)
        return PatchResult.APPLIED


PlanPatch = Annotated[SetStepCompleted | AppendHistory, Field(discriminator="op")]


class Plan(BaseModel):
    """Durable, ordered sequence of delayed steps with an append-only history.

    `owner_key` partitions storage and queue operations (the agent identity);
    `subject_key` is the user the plan runs on behalf of. `version` is
    bumped on every applied mutation and serves as the optimistic
    concurrency token. `completed_count` doubles as the cursor to the first
    pending step.
    """

    id: UUID = Field(default_factory=uuid4, description="Unique identifier")
    name: str = Field(..., description="Short human-readable label")
    owner_key: str = Field(..., description="Owning agent identity (partition key)")
    subject_key: str = Field(..., description="User the plan runs on behalf of")
    steps: list[Step] = Field(..., min_length=1, description="Ordered steps")
    history: list[str] = Field(default_factory=list, description="Append-only outcomes")
    created: datetime = Field(default_factory=utc_now, description="Creation time")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")
    completed_count: int = Field(default=0, ge=0, description="Completed step count")

    @model_validator(mode="after")
    def check_step_sequence(self) -> Self:
        """Positions are 1..N and completed steps form a prefix."""
        positions = [step.position for step in self.steps]
        if positions != list(range(1, len(self.steps) + 1)):
            raise ValueError(f"step positions must be contiguous from 1, got {positions}")

        completed = [step.completed for step in self.steps]
        done = sum(completed)
        if completed != [True] * done + [False] * (len(completed) - done):
            raise ValueError("steps must be completed in position order")
        if self.completed_count != done:
            raise ValueError(
                f"completed_count {self.completed_count} does not match {done} completed steps"
            )
        return self

    @classmethod
    def new(
        cls,
        name: str,
        owner_key: str,
        subject_key: str,
        steps: Sequence[StepSpec],
        created: datetime | None = None,
    ) -> "Plan":
        """Create a plan, assigning 1-based positions in list order."""
        return cls(
            name=name,
            owner_key=owner_key,
            subject_key=subject_key,
            steps=[
                Step(position=index, description=spec.description, delay=spec.delay)
                for index, spec in enumerate(steps, start=1)
            ],
            created=created or utc_now(),
        )

    @property
    def is_done(self) -> bool:
        """True when every step is completed."""
        return self.completed_count >= len(self.steps)

    @property
    def has_incomplete_steps(self) -> bool:
        return not self.is_done

    def step_at(self, position: int) -> Step | None:
        """Get the step at a 1-based position."""
        if 1 <= position <= len(self.steps):
            return self.steps[position - 1]
        return None

    def next_pending_step(self) -> Step | None:
        """The first step not yet completed, or None when the plan is done."""
        if self.is_done:
            return None
        return self.steps[self.completed_count]

    def eligible_at(self, step: Step) -> datetime:
        """Earliest time `step` may run: previous completion (or creation) + delay."""
        previous = self.step_at(step.position - 1)
        if previous is not None and previous.completed_at is not None:
            return previous.completed_at + step.delay
        return self.created + step.delay

    def with_patches(self, patches: Iterable[SetStepCompleted | AppendHistory]) -> "Plan | None":
        """Return a copy with all patches applied, or None if any is rejected.

        The version is bumped once if at least one patch changed the plan.
        """
        updated = self.model_copy(deep=True)
        changed = False
        for patch in patches:
            result = patch.apply_to(updated)
            if result is PatchResult.REJECTED:
                return None
            changed = changed or result is PatchResult.APPLIED

        if changed:
            updated.version += 1
        return updated


class PlanTrigger(BaseModel):
    """Queue payload instructing the engine to advance one plan."""

    model_config = ConfigDict(frozen=True)

    plan_id: UUID
    subject_key: str
    owner_key: str


class DeliveryHandle(BaseModel):
    """Receipt for a scheduled trigger."""

    delivery_id: str = Field(..., description="Queue message identifier")
    receipt: str = Field(..., description="Receipt required to acknowledge this delivery")
    delivery_time: datetime = Field(..., description="Not visible before this time")


class QueuedTrigger(BaseModel):
    """A trigger as handed to a consumer by the delay queue."""

    delivery_id: str
    receipt: str
    trigger: PlanTrigger
    dequeue_count: int = Field(default=0, ge=0)
    inserted_at: datetime
    next_visible_at: datetime


class TriggerOutcome(str, Enum):
    """What the execution engine did with one trigger."""

    PLAN_NOT_FOUND = "plan_not_found"
    PLAN_DONE = "plan_done"
    RESCHEDULED = "rescheduled"  # Arrived before the step's delay elapsed
    LEASE_HELD = "lease_held"  # Another worker is executing this plan
    STEP_COMPLETED = "step_completed"  # Step committed, next trigger armed
    PLAN_FINISHED = "plan_finished"  # Last step committed
    COMMIT_CONFLICT = "commit_conflict"  # A duplicate committed the step first
    COMMIT_REJECTED = "commit_rejected"  # Plan or step vanished before commit


class TriggerResult(BaseModel):
    """Result of handling one trigger."""

    outcome: TriggerOutcome
    plan_id: UUID
    position: int | None = None
    next_delivery: DeliveryHandle | None = None
