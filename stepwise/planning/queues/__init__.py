"""Delay queues for plan triggers."""

from stepwise.planning.queue import DelayScheduler
from stepwise.planning.queues.inmemory import InMemoryDelayScheduler
from stepwise.planning.queues.redis import RedisDelayScheduler

__all__ = [
    "DelayScheduler",
    "InMemoryDelayScheduler",
    "RedisDelayScheduler",
]
