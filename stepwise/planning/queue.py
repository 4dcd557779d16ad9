"""DelayScheduler abstract interface.

A delay queue for plan triggers with at-least-once delivery:
- schedule() hides a trigger until its delay elapses
- receive() hands visible triggers to a consumer and hides them again for
  the visibility timeout, issuing a fresh receipt per delivery
- acknowledge() deletes a delivery, but only with its latest receipt
- triggers delivered more than `max_deliveries` times are dead-lettered
"""

from abc import ABC, abstractmethod
from datetime import timedelta

from stepwise.planning.models import DeliveryHandle, PlanTrigger, QueuedTrigger


class DelayScheduler(ABC):
    """Abstract interface for the plan trigger queue."""

    @abstractmethod
    async def schedule(
        self,
        trigger: PlanTrigger,
        not_before: timedelta,
    ) -> DeliveryHandle:
        """Enqueue a trigger that is not delivered before `not_before` elapses.

        Raises:
            InvalidArgumentError: If not_before is negative
        """
        pass

    @abstractmethod
    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: timedelta | None = None,
    ) -> list[QueuedTrigger]:
        """Dequeue visible triggers as in-flight.

        Args:
            max_messages: Maximum triggers to return
            visibility_timeout: How long received triggers stay hidden
                (queue default if None)

        Returns:
            Received triggers, oldest visibility time first
        """
        pass

    @abstractmethod
    async def acknowledge(self, delivery: QueuedTrigger) -> bool:
        """Delete an in-flight trigger.

        Returns:
            False if the trigger is gone or was redelivered since (stale receipt)
        """
        pass

    @abstractmethod
    async def get_dead_letters(self, limit: int = 100) -> list[QueuedTrigger]:
        """List triggers that exhausted their delivery budget."""
        pass
