"""Plan execution engine configuration."""

from typing import Literal, Self

from pydantic import BaseModel, Field, model_validator

LeaseBackendType = Literal["inmemory", "redis"]


class PlanLeaseConfig(BaseModel):
    """Per-plan lease held while a step executor runs."""

    enabled: bool = Field(default=True, description="Acquire a lease before executing a step")
    backend: LeaseBackendType = Field(
        default="inmemory",
        description="Lease backend type",
    )
    connection_url: str | None = Field(
        default=None,
        description="Connection URL (from env var)",
    )
    key_prefix: str = Field(
        default="planlock",
        description="Redis key prefix for lease keys",
    )
    lock_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Lease auto-release time",
    )
    blocking_timeout_seconds: float = Field(
        default=0.5,
        ge=0,
        description="How long to wait for a lease held by another worker",
    )


class EngineConfig(BaseModel):
    """Plan execution engine configuration."""

    executor_timeout_seconds: float | None = Field(
        default=300.0,
        gt=0,
        description="Upper bound for one step executor call (None = unbounded)",
    )
    optimistic_concurrency: bool = Field(
        default=True,
        description="Commit step results only if the plan version is unchanged since load",
    )
    enforce_step_delay: bool = Field(
        default=True,
        description="Re-arm triggers that arrive before the step's delay has elapsed",
    )
    schedule_tolerance_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Early-arrival slack before a trigger is re-armed",
    )
    lease: PlanLeaseConfig = Field(
        default_factory=PlanLeaseConfig,
        description="Per-plan lease settings",
    )

    @model_validator(mode="after")
    def check_lease_outlives_executor(self) -> Self:
        """A lease must not expire while its holder is still executing."""
        if (
            self.lease.enabled
            and self.executor_timeout_seconds is not None
            and self.lease.lock_timeout_seconds <= self.executor_timeout_seconds
        ):
            raise ValueError(
                "lease.lock_timeout_seconds must exceed executor_timeout_seconds"
            )
        return self
