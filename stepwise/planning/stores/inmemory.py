"""In-memory implementation of PlanStore."""

import asyncio
from collections.abc import Sequence
from uuid import UUID

from stepwise.observability.logging import get_logger
from stepwise.planning.errors import PlanConflictError, PlanVersionConflictError
from stepwise.planning.models import AppendHistory, Plan, SetStepCompleted
from stepwise.planning.store import PlanStore

logger = get_logger(__name__)


class InMemoryPlanStore(PlanStore):
    """In-memory implementation of PlanStore for testing and development.

    Plans are kept as deep copies so callers never share state with the
    store. Not suitable for production use.
    """

    def __init__(self) -> None:
        """Initialize empty storage."""
        self._plans: dict[tuple[str, UUID], Plan] = {}
        self._lock = asyncio.Lock()

    async def create(self, plan: Plan) -> None:
        """Store a new plan."""
        key = (plan.owner_key, plan.id)
        async with self._lock:
            if key in self._plans:
                raise PlanConflictError(f"Plan {plan.id} already exists")
            self._plans[key] = plan.model_copy(deep=True)

    async def get(self, plan_id: UUID, owner_key: str) -> Plan | None:
        """Get a plan by ID."""
        plan = self._plans.get((owner_key, plan_id))
        return plan.model_copy(deep=True) if plan else None

    async def apply_patches(
        self,
        plan_id: UUID,
        owner_key: str,
        patches: Sequence[SetStepCompleted | AppendHistory],
        *,
        expected_version: int | None = None,
    ) -> Plan | None:
        """Apply patches to one plan atomically."""
        key = (owner_key, plan_id)
        async with self._lock:
            current = self._plans.get(key)
            if current is None:
                return None

            if expected_version is not None and current.version != expected_version:
                raise PlanVersionConflictError(
                    f"Plan {plan_id} is at version {current.version}",
                    expected_version=expected_version,
                    actual_version=current.version,
                )

            updated = current.with_patches(patches)
            if updated is None:
                logger.debug(
                    "plan_patch_rejected",
                    plan_id=str(plan_id),
                    ops=[patch.op for patch in patches],
                )
                return None

            self._plans[key] = updated
            return updated.model_copy(deep=True)
