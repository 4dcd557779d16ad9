"""Plan API surface used by agent runtimes.

Creates, queries and advances plans. Creating a plan arms the first trigger;
every later trigger is armed by the execution engine.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from uuid import UUID

from stepwise.observability.logging import get_logger
from stepwise.observability.metrics import PLANS_CREATED
from stepwise.planning.errors import InvalidArgumentError
from stepwise.planning.models import (
    DeliveryHandle,
    Plan,
    PlanTrigger,
    StepSpec,
    utc_now,
)
from stepwise.planning.queue import DelayScheduler
from stepwise.planning.store import PlanStore

logger = get_logger(__name__)


def _require(value: str, field: str) -> str:
    if not value or not value.strip():
        raise InvalidArgumentError(f"{field} must not be blank")
    return value


class PlanningService:
    """Operations for creating, inspecting and advancing plans."""

    def __init__(
        self,
        store: PlanStore,
        scheduler: DelayScheduler,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize service.

        Args:
            store: Plan persistence store
            scheduler: Delay queue for plan triggers
            clock: Time source, injectable for tests
        """
        self._store = store
        self._scheduler = scheduler
        self._clock = clock

    async def create_plan(
        self,
        name: str,
        subject_key: str,
        owner_key: str,
        steps: Sequence[StepSpec],
    ) -> Plan:
        """Persist a new plan and arm the trigger for its first step.

        The plan is stored before the trigger is armed, so a trigger never
        references a plan that does not exist. If arming fails the plan is
        left without a trigger and the error propagates; the caller can
        arm it with schedule_next_step.

        Raises:
            InvalidArgumentError: If steps is empty or name/keys are blank
        """
        _require(name, "name")
        _require(subject_key, "subject_key")
        _require(owner_key, "owner_key")
        if not steps:
            raise InvalidArgumentError("A plan needs at least one step")

        plan = Plan.new(
            name=name,
            owner_key=owner_key,
            subject_key=subject_key,
            steps=steps,
            created=self._clock(),
        )
        await self._store.create(plan)

        handle = await self._scheduler.schedule(
            PlanTrigger(plan_id=plan.id, subject_key=subject_key, owner_key=owner_key),
            plan.steps[0].delay,
        )
        PLANS_CREATED.inc()

        logger.info(
            "plan_created",
            plan_id=str(plan.id),
            owner_key=owner_key,
            steps=len(plan.steps),
            first_delivery=handle.delivery_time.isoformat(),
        )
        return plan

    async def get_plan(self, plan_id: UUID, owner_key: str) -> Plan | None:
        return await self._store.get(plan_id, owner_key)

    async def has_incomplete_steps(self, plan_id: UUID, owner_key: str) -> bool:
        """True if the plan exists and has a pending step."""
        plan = await self._store.get(plan_id, owner_key)
        return plan is not None and plan.has_incomplete_steps

    async def complete_step(self, plan_id: UUID, owner_key: str, position: int) -> bool:
        """Mark a step completed out of band.

        Idempotent. Completing a step while an earlier one is pending is
        refused.

        Returns:
            False if the plan or step doesn't exist or can't be completed yet

        Raises:
            InvalidArgumentError: If position < 1
        """
        if position < 1:
            raise InvalidArgumentError(f"Step position must be >= 1, got {position}")

        completed = await self._store.patch_step_completed(
            plan_id, owner_key, position, self._clock()
        )
        if completed:
            logger.info(
                "plan_step_marked_completed",
                plan_id=str(plan_id),
                owner_key=owner_key,
                position=position,
            )
        else:
            logger.warning(
                "plan_step_completion_refused",
                plan_id=str(plan_id),
                owner_key=owner_key,
                position=position,
            )
        return completed

    async def append_history_entry(
        self,
        plan_id: UUID,
        owner_key: str,
        entry: str,
    ) -> bool:
        return await self._store.append_history(plan_id, owner_key, entry)

    async def get_history(self, plan_id: UUID, owner_key: str) -> list[str]:
        """History entries in order; empty if the plan doesn't exist."""
        plan = await self._store.get(plan_id, owner_key)
        if plan is None:
            return []
        return list(plan.history)

    async def schedule_next_step(
        self,
        plan_id: UUID,
        subject_key: str,
        owner_key: str,
        delay: timedelta,
    ) -> DeliveryHandle | None:
        """Arm a trigger for the plan after an explicit delay.

        Returns:
            The delivery handle, or None when the plan is missing or done
        """
        plan = await self._store.get(plan_id, owner_key)
        if plan is None:
            logger.warning(
                "schedule_next_step_plan_not_found",
                plan_id=str(plan_id),
                owner_key=owner_key,
            )
            return None

        if plan.is_done:
            logger.info(
                "schedule_next_step_plan_done",
                plan_id=str(plan_id),
                owner_key=owner_key,
            )
            return None

        handle = await self._scheduler.schedule(
            PlanTrigger(plan_id=plan_id, subject_key=subject_key, owner_key=owner_key),
            delay,
        )
        logger.info(
            "plan_trigger_scheduled",
            plan_id=str(plan_id),
            owner_key=owner_key,
            delivery_id=handle.delivery_id,
            delivery_time=handle.delivery_time.isoformat(),
        )
        return handle
