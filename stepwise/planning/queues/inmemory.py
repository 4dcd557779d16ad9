"""In-memory implementation of DelayScheduler."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import uuid4

from stepwise.config.models.queue import PlanQueueConfig
from stepwise.observability.logging import get_logger
from stepwise.observability.metrics import TRIGGERS_DEAD_LETTERED
from stepwise.planning.errors import InvalidArgumentError
from stepwise.planning.models import DeliveryHandle, PlanTrigger, QueuedTrigger, utc_now
from stepwise.planning.queue import DelayScheduler

logger = get_logger(__name__)


class InMemoryDelayScheduler(DelayScheduler):
    """In-memory delay queue for testing and development.

    Takes an injectable clock so tests can move time forward instead of
    sleeping. Linear scan on receive; not suitable for production use.
    """

    def __init__(
        self,
        config: PlanQueueConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or PlanQueueConfig()
        self._clock = clock
        self._messages: dict[str, QueuedTrigger] = {}
        self._dead_letters: dict[str, QueuedTrigger] = {}
        self._lock = asyncio.Lock()

    async def schedule(
        self,
        trigger: PlanTrigger,
        not_before: timedelta,
    ) -> DeliveryHandle:
        """Enqueue a trigger hidden for `not_before`."""
        if not_before < timedelta(0):
            raise InvalidArgumentError("not_before must not be negative")

        now = self._clock()
        message = QueuedTrigger(
            delivery_id=uuid4().hex,
            receipt=uuid4().hex,
            trigger=trigger,
            inserted_at=now,
            next_visible_at=now + not_before,
        )
        async with self._lock:
            self._messages[message.delivery_id] = message

        return DeliveryHandle(
            delivery_id=message.delivery_id,
            receipt=message.receipt,
            delivery_time=message.next_visible_at,
        )

    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: timedelta | None = None,
    ) -> list[QueuedTrigger]:
        """Dequeue visible triggers, hiding them for the visibility timeout."""
        timeout = visibility_timeout or timedelta(
            seconds=self._config.visibility_timeout_seconds
        )
        now = self._clock()
        received: list[QueuedTrigger] = []

        async with self._lock:
            due = sorted(
                (m for m in self._messages.values() if m.next_visible_at <= now),
                key=lambda m: m.next_visible_at,
            )
            for message in due:
                if len(received) >= max_messages:
                    break

                message.dequeue_count += 1
                if message.dequeue_count > self._config.max_deliveries:
                    del self._messages[message.delivery_id]
                    self._dead_letters[message.delivery_id] = message
                    TRIGGERS_DEAD_LETTERED.labels(queue=self._config.queue_name).inc()
                    logger.warning(
                        "trigger_dead_lettered",
                        delivery_id=message.delivery_id,
                        plan_id=str(message.trigger.plan_id),
                        dequeue_count=message.dequeue_count,
                    )
                    continue

                message.receipt = uuid4().hex
                message.next_visible_at = now + timeout
                received.append(message.model_copy())

        return received

    async def acknowledge(self, delivery: QueuedTrigger) -> bool:
        """Delete a delivery if its receipt is still current."""
        async with self._lock:
            current = self._messages.get(delivery.delivery_id)
            if current is None or current.receipt != delivery.receipt:
                return False
            del self._messages[delivery.delivery_id]
            return True

    async def get_dead_letters(self, limit: int = 100) -> list[QueuedTrigger]:
        """List dead-lettered triggers."""
        return [m.model_copy() for m in list(self._dead_letters.values())[:limit]]

    def pending(self) -> list[QueuedTrigger]:
        """All queued triggers (visible or not), earliest visibility first."""
        return sorted(
            (m.model_copy() for m in self._messages.values()),
            key=lambda m: m.next_visible_at,
        )
