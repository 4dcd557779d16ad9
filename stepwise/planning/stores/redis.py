"""Redis implementation of PlanStore.

Each plan is one JSON document. Patches run as WATCH/MULTI optimistic
transactions, so two writers patching the same plan never lose each other's
updates; the loser of a race retries against the fresh document.

Key structure:
- {prefix}:{owner_key}:{plan_id} - Plan document
"""

from collections.abc import Sequence
from uuid import UUID

import redis.asyncio as redis
from pydantic import ValidationError

from stepwise.config.models.storage import PlanStoreConfig
from stepwise.observability.logging import get_logger
from stepwise.planning.errors import (
    PlanConflictError,
    PlanVersionConflictError,
    StoreConnectionError,
    StoreError,
)
from stepwise.planning.models import AppendHistory, Plan, SetStepCompleted
from stepwise.planning.store import PlanStore

logger = get_logger(__name__)


class RedisPlanStore(PlanStore):
    """Redis implementation of PlanStore."""

    def __init__(
        self,
        client: redis.Redis,
        config: PlanStoreConfig | None = None,
    ) -> None:
        """Initialize Redis plan store.

        Args:
            client: Redis client instance
            config: Plan store configuration (uses defaults if not provided)
        """
        self._client = client
        self._config = config or PlanStoreConfig(backend="redis")
        self._prefix = self._config.key_prefix

    def _plan_key(self, plan_id: UUID, owner_key: str) -> str:
        """Get document key for a plan."""
        return f"{self._prefix}:{owner_key}:{plan_id}"

    def _parse_plan(self, plan_id: UUID, data: str | bytes) -> Plan:
        try:
            return Plan.model_validate_json(data)
        except ValidationError as e:
            logger.error("plan_document_invalid", plan_id=str(plan_id), error=str(e))
            raise StoreError(f"Stored plan {plan_id} is not a valid document", cause=e) from e

    async def create(self, plan: Plan) -> None:
        """Store a new plan, failing if the key already exists."""
        key = self._plan_key(plan.id, plan.owner_key)
        try:
            created = await self._client.set(key, plan.model_dump_json(), nx=True)
        except redis.RedisError as e:
            logger.error("plan_create_error", plan_id=str(plan.id), error=str(e))
            raise StoreConnectionError(f"Failed to create plan: {e}", cause=e) from e

        if not created:
            raise PlanConflictError(f"Plan {plan.id} already exists")

        logger.info(
            "plan_saved",
            plan_id=str(plan.id),
            owner_key=plan.owner_key,
            steps=len(plan.steps),
        )

    async def get(self, plan_id: UUID, owner_key: str) -> Plan | None:
        """Get a plan by ID."""
        try:
            data = await self._client.get(self._plan_key(plan_id, owner_key))
        except redis.RedisError as e:
            logger.error("plan_get_error", plan_id=str(plan_id), error=str(e))
            raise StoreConnectionError(f"Failed to get plan: {e}", cause=e) from e

        if data is None:
            logger.debug("plan_not_found", plan_id=str(plan_id), owner_key=owner_key)
            return None

        return self._parse_plan(plan_id, data)

    async def apply_patches(
        self,
        plan_id: UUID,
        owner_key: str,
        patches: Sequence[SetStepCompleted | AppendHistory],
        *,
        expected_version: int | None = None,
    ) -> Plan | None:
        """Apply patches inside an optimistic WATCH transaction."""
        key = self._plan_key(plan_id, owner_key)

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for attempt in range(1, self._config.max_patch_retries + 1):
                    try:
                        await pipe.watch(key)
                        data = await pipe.get(key)
                        if data is None:
                            return None

                        current = self._parse_plan(plan_id, data)
                        if (
                            expected_version is not None
                            and current.version != expected_version
                        ):
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
                        if updated.version == current.version:
                            return updated

                        pipe.multi()
                        pipe.set(key, updated.model_dump_json())
                        await pipe.execute()
                        return updated

                    except redis.WatchError:
                        logger.debug(
                            "plan_patch_retry",
                            plan_id=str(plan_id),
                            attempt=attempt,
                        )
                        continue

        except redis.RedisError as e:
            logger.error("plan_patch_error", plan_id=str(plan_id), error=str(e))
            raise StoreConnectionError(f"Failed to patch plan: {e}", cause=e) from e

        raise StoreError(
            f"Plan {plan_id} patch lost {self._config.max_patch_retries} races in a row"
        )
