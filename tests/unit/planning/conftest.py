"""Fixtures for planning tests.

Everything runs on one FakeClock, so delays are exercised by advancing the
clock instead of sleeping.
"""

from datetime import UTC, datetime, timedelta

import pytest

from stepwise.config.models.engine import EngineConfig
from stepwise.config.models.queue import PlanQueueConfig
from stepwise.planning.engine import PlanExecutionEngine
from stepwise.planning.executors.mock import MockStepExecutor
from stepwise.planning.lease import InMemoryPlanLease
from stepwise.planning.models import QueuedTrigger, StepSpec
from stepwise.planning.queues.inmemory import InMemoryDelayScheduler
from stepwise.planning.service import PlanningService
from stepwise.planning.stores.inmemory import InMemoryPlanStore

class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryPlanStore:
    return InMemoryPlanStore()


@pytest.fixture
def queue_config() -> PlanQueueConfig:
    return PlanQueueConfig(max_deliveries=3, visibility_timeout_seconds=60)


@pytest.fixture
def scheduler(queue_config, clock) -> InMemoryDelayScheduler:
    return InMemoryDelayScheduler(queue_config, clock=clock)


@pytest.fixture
def executor() -> MockStepExecutor:
    return MockStepExecutor(default_response="done")


@pytest.fixture
def lease() -> InMemoryPlanLease:
    return InMemoryPlanLease()


@pytest.fixture
def engine(store, scheduler, executor, lease, clock) -> PlanExecutionEngine:
    return PlanExecutionEngine(
        store=store,
        scheduler=scheduler,
        executor=executor,
        config=EngineConfig(),
        lease=lease,
        clock=clock,
    )


@pytest.fixture
def service(store, scheduler, clock) -> PlanningService:
    return PlanningService(store, scheduler, clock=clock)


@pytest.fixture
def onboarding_steps() -> list[StepSpec]:
    return [
        StepSpec.from_hours("send welcome", 0),
        StepSpec.from_hours("check in", 24),
    ]


@pytest.fixture
def deliver_one(scheduler):
    """Receive exactly one visible trigger."""

    async def _deliver_one() -> QueuedTrigger:
        deliveries = await scheduler.receive(max_messages=10)
        assert len(deliveries) == 1, f"expected one visible trigger, got {len(deliveries)}"
        return deliveries[0]

    return _deliver_one
