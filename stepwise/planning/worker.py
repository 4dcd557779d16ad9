"""Queue worker feeding plan triggers to the execution engine.

The worker:
1. Receives a batch of visible triggers from the delay queue
2. Hands each to the engine concurrently
3. Acknowledges triggers whose handling returned normally
4. Leaves failed triggers in flight, so the queue redelivers them after the
   visibility timeout
"""

import asyncio
from datetime import timedelta

import structlog

from stepwise.config.models.queue import PlanQueueConfig
from stepwise.observability.logging import get_logger
from stepwise.observability.metrics import TRIGGERS_ACKNOWLEDGED
from stepwise.planning.engine import PlanExecutionEngine
from stepwise.planning.models import QueuedTrigger
from stepwise.planning.queue import DelayScheduler

logger = get_logger(__name__)


class PlanQueueWorker:
    """Background consumer of the plan trigger queue."""

    def __init__(
        self,
        scheduler: DelayScheduler,
        engine: PlanExecutionEngine,
        config: PlanQueueConfig | None = None,
    ):
        """Initialize worker.

        Args:
            scheduler: Delay queue to consume
            engine: Engine handling each trigger
            config: Queue configuration (batch size, poll interval, visibility)
        """
        self._scheduler = scheduler
        self._engine = engine
        self._config = config or PlanQueueConfig()
        self._running = False
        self._poll_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop in a background task."""
        if self._running:
            logger.warning("plan_worker_already_running")
            return

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())

        logger.info(
            "plan_worker_started",
            queue_name=self._config.queue_name,
            poll_interval_seconds=self._config.poll_interval_seconds,
            batch_size=self._config.batch_size,
        )

    async def stop(self) -> None:
        """Stop the polling loop.

        Triggers being handled when the loop is cancelled stay unacknowledged
        and are redelivered.
        """
        if not self._running:
            return

        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        logger.info("plan_worker_stopped")

    async def _poll_loop(self) -> None:
        """Poll until stopped; sleeps when a batch acknowledged nothing."""
        while self._running:
            try:
                acknowledged = await self.process_batch()
            except Exception as e:
                logger.error("plan_worker_poll_error", error=str(e))
                acknowledged = 0

            if acknowledged == 0:
                await asyncio.sleep(self._config.poll_interval_seconds)

    async def process_batch(self) -> int:
        """Receive and handle one batch of triggers.

        Returns:
            Number of triggers acknowledged
        """
        deliveries = await self._scheduler.receive(
            max_messages=self._config.batch_size,
            visibility_timeout=timedelta(seconds=self._config.visibility_timeout_seconds),
        )
        if not deliveries:
            return 0

        logger.debug("plan_worker_batch_received", count=len(deliveries))

        acknowledged = await asyncio.gather(
            *(self._handle_delivery(delivery) for delivery in deliveries)
        )

        logger.info(
            "plan_worker_batch_processed",
            received=len(deliveries),
            acknowledged=sum(acknowledged),
        )
        return sum(acknowledged)

    async def _handle_delivery(self, delivery: QueuedTrigger) -> bool:
        """Handle one trigger; returns True if it was acknowledged."""
        with structlog.contextvars.bound_contextvars(
            delivery_id=delivery.delivery_id,
            dequeue_count=delivery.dequeue_count,
        ):
            try:
                result = await self._engine.handle_trigger(delivery.trigger)
            except Exception as e:
                logger.error(
                    "plan_trigger_failed",
                    plan_id=str(delivery.trigger.plan_id),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return False

            try:
                acknowledged = await self._scheduler.acknowledge(delivery)
            except Exception as e:
                logger.error(
                    "plan_trigger_ack_failed",
                    plan_id=str(delivery.trigger.plan_id),
                    error=str(e),
                )
                return False

            if acknowledged:
                TRIGGERS_ACKNOWLEDGED.inc()
            else:
                logger.warning(
                    "plan_trigger_receipt_stale",
                    plan_id=str(delivery.trigger.plan_id),
                    outcome=result.outcome.value,
                )
            return acknowledged
