"""Plan stores."""

from stepwise.planning.store import PlanStore
from stepwise.planning.stores.inmemory import InMemoryPlanStore
from stepwise.planning.stores.redis import RedisPlanStore

__all__ = [
    "PlanStore",
    "InMemoryPlanStore",
    "RedisPlanStore",
]
