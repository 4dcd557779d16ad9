"""Delay queue configuration."""

from typing import Literal

from pydantic import BaseModel, Field

QueueBackendType = Literal["inmemory", "redis"]


class PlanQueueConfig(BaseModel):
    """Delay queue carrying plan triggers.

    The queue delivers at-least-once: a trigger that is received but not
    acknowledged within the visibility timeout becomes visible again.
    """

    backend: QueueBackendType = Field(
        default="inmemory",
        description="Backend type",
    )
    connection_url: str | None = Field(
        default=None,
        description="Connection URL (from env var)",
    )
    queue_name: str = Field(
        default="plan-queue",
        description="Queue name",
    )
    key_prefix: str = Field(
        default="queue",
        description="Redis key prefix for queue structures",
    )
    visibility_timeout_seconds: float = Field(
        default=900.0,
        gt=0,
        description="How long a received trigger stays hidden before redelivery",
    )
    max_deliveries: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Deliveries before a trigger is moved to the dead-letter set",
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Worker poll interval when the queue is empty",
    )
    batch_size: int = Field(
        default=16,
        ge=1,
        le=256,
        description="Maximum triggers received per poll",
    )
