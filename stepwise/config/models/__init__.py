"""Configuration model exports.

    from stepwise.config.models import EngineConfig, PlanStoreConfig
"""

from stepwise.config.models.engine import EngineConfig, PlanLeaseConfig
from stepwise.config.models.observability import (
    LoggingConfig,
    MetricsConfig,
    ObservabilityConfig,
)
from stepwise.config.models.queue import PlanQueueConfig
from stepwise.config.models.storage import PlanStoreConfig

__all__ = [
    # Engine
    "EngineConfig",
    "PlanLeaseConfig",
    # Observability
    "LoggingConfig",
    "MetricsConfig",
    "ObservabilityConfig",
    # Queue
    "PlanQueueConfig",
    # Storage
    "PlanStoreConfig",
]
