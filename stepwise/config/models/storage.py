"""Plan store backend configuration."""

from typing import Literal

from pydantic import BaseModel, Field

BackendType = Literal["inmemory", "redis"]


class PlanStoreConfig(BaseModel):
    """Configuration for the plan store backend.

    Note: connection URLs with credentials should come from environment
    variables (STEPWISE_STORAGE__CONNECTION_URL), not config files.
    """

    backend: BackendType = Field(
        default="inmemory",
        description="Backend type",
    )
    connection_url: str | None = Field(
        default=None,
        description="Connection URL (from env var)",
    )
    key_prefix: str = Field(
        default="plan",
        description="Redis key prefix for plan documents",
    )
    max_patch_retries: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Retries when a concurrent writer invalidates a patch transaction",
    )
