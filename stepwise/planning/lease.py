"""Per-plan leases.

A lease is held while a step executor runs, so that at most one of several
duplicate triggers for the same plan invokes the executor. Losing the race
is not an error: the caller simply sees `acquired=False`.

Lease key format: {prefix}:{owner_key}:{plan_id}
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from stepwise.observability.logging import get_logger
from stepwise.planning.errors import LeaseError

logger = get_logger(__name__)


def build_plan_key(owner_key: str, plan_id: UUID) -> str:
    """Build the composite key identifying one plan.

    Format: {owner_key}:{plan_id}
    """
    return f"{owner_key}:{plan_id}"


class PlanLease(ABC):
    """Abstract interface for per-plan mutual exclusion."""

    @abstractmethod
    def acquire(self, plan_key: str) -> AbstractAsyncContextManager[bool]:
        """Try to take the lease for a plan.

        Usage:
            async with lease.acquire(build_plan_key(owner, plan_id)) as acquired:
                if acquired:
                    # Safe to execute the step
                else:
                    # Another worker is executing this plan
        """
        pass


class InMemoryPlanLease(PlanLease):
    """Process-local lease for tests and single-process deployments.

    Leases do not auto-expire; they are released when the holder exits.
    """

    def __init__(self, blocking_timeout: float = 0.0) -> None:
        self._blocking_timeout = blocking_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders and waiters per key; a lock is dropped once nobody uses it
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, plan_key: str) -> AsyncGenerator[bool, None]:
        lock = self._locks.setdefault(plan_key, asyncio.Lock())
        self._users[plan_key] = self._users.get(plan_key, 0) + 1

        try:
            acquired = False
            if not lock.locked():
                await lock.acquire()
                acquired = True
            elif self._blocking_timeout > 0:
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self._blocking_timeout)
                    acquired = True
                except TimeoutError:
                    acquired = False

            try:
                yield acquired
            finally:
                if acquired:
                    lock.release()
        finally:
            self._users[plan_key] -= 1
            if self._users[plan_key] == 0:
                del self._users[plan_key]
                del self._locks[plan_key]

    @property
    def tracked_keys(self) -> int:
        """Number of plan keys currently held or waited on."""
        return len(self._locks)

    def is_locked(self, plan_key: str) -> bool:
        lock = self._locks.get(plan_key)
        return lock is not None and lock.locked()


class RedisPlanLease(PlanLease):
    """Redis-backed distributed lease.

    The lock timeout must exceed the longest step execution, otherwise the
    lease can expire while its holder is still running.
    """

    def __init__(
        self,
        redis: Redis,
        lock_timeout: float = 600.0,
        blocking_timeout: float = 0.5,
        key_prefix: str = "planlock",
    ):
        """Initialize plan lease.

        Args:
            redis: Redis client instance
            lock_timeout: How long a lease is held before auto-release (seconds)
            blocking_timeout: How long to wait for a held lease (seconds)
            key_prefix: Redis key prefix
        """
        self._redis = redis
        self._lock_timeout = lock_timeout
        self._blocking_timeout = blocking_timeout
        self._key_prefix = key_prefix

    def _key(self, plan_key: str) -> str:
        return f"{self._key_prefix}:{plan_key}"

    @asynccontextmanager
    async def acquire(self, plan_key: str) -> AsyncGenerator[bool, None]:
        lock = self._redis.lock(
            self._key(plan_key),
            timeout=self._lock_timeout,
            blocking_timeout=self._blocking_timeout,
        )

        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error("plan_lease_acquire_error", plan_key=plan_key, error=str(e))
            raise LeaseError(f"Failed to acquire plan lease: {e}", cause=e) from e

        try:
            yield acquired
        finally:
            if acquired:
                try:
                    await lock.release()
                except LockError as e:
                    logger.warning(
                        "plan_lease_expired_before_release",
                        plan_key=plan_key,
                        error=str(e),
                    )

    async def is_locked(self, plan_key: str) -> bool:
        """Check if a plan is currently leased."""
        return await self._redis.exists(self._key(plan_key)) > 0

    async def force_release(self, plan_key: str) -> bool:
        """Force release a lease. Only for cleanup after failures.

        Returns:
            True if a lease was released, False if none existed
        """
        return await self._redis.delete(self._key(plan_key)) > 0
