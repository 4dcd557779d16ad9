"""PlanStore abstract interface."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from stepwise.planning.models import AppendHistory, Plan, SetStepCompleted


class PlanStore(ABC):
    """Abstract interface for plan storage.

    Plans are keyed by (plan_id, owner_key). All mutations are targeted
    patches applied atomically against one plan document; no lock spans a
    caller's read-decide-write sequence, so callers that need it pass
    `expected_version`.
    """

    @abstractmethod
    async def create(self, plan: Plan) -> None:
        """Store a new plan.

        Raises:
            PlanConflictError: If the plan id already exists for the owner
        """
        pass

    @abstractmethod
    async def get(self, plan_id: UUID, owner_key: str) -> Plan | None:
        """Get a plan by ID.

        Returns:
            Plan if found, None otherwise
        """
        pass

    @abstractmethod
    async def apply_patches(
        self,
        plan_id: UUID,
        owner_key: str,
        patches: Sequence[SetStepCompleted | AppendHistory],
        *,
        expected_version: int | None = None,
    ) -> Plan | None:
        """Apply patches to one plan atomically.

        Args:
            plan_id: Plan identifier
            owner_key: Owner partition key
            patches: Patch descriptors, applied in order
            expected_version: Only apply if the stored version matches

        Returns:
            The updated plan, or None if the plan is missing or any patch
            is not applicable (nothing is written in that case)

        Raises:
            PlanVersionConflictError: If expected_version is stale
        """
        pass

    async def patch_step_completed(
        self,
        plan_id: UUID,
        owner_key: str,
        position: int,
        completed_at: datetime,
    ) -> bool:
        """Mark one step completed.

        Idempotent: completing an already completed step succeeds without a
        write.

        Returns:
            False if the plan or position doesn't exist, or an earlier step
            is still pending
        """
        updated = await self.apply_patches(
            plan_id,
            owner_key,
            [SetStepCompleted(position=position, completed_at=completed_at)],
        )
        return updated is not None

    async def append_history(self, plan_id: UUID, owner_key: str, entry: str) -> bool:
        """Append one history entry.

        Returns:
            False if the plan doesn't exist
        """
        updated = await self.apply_patches(plan_id, owner_key, [AppendHistory(entry=entry)])
        return updated is not None
