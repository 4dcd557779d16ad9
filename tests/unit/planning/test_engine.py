"""Tests for PlanExecutionEngine.

Tests cover:
- The onboarding scenario end to end
- Missing and finished plans
- Executor failures and timeouts
- Early triggers being re-armed
- Duplicate triggers with and without the plan lease
- Commit retries and rejections
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from stepwise.config.models.engine import EngineConfig, PlanLeaseConfig
from stepwise.planning.engine import PlanExecutionEngine
from stepwise.planning.errors import StepExecutionError
from stepwise.planning.executors import FunctionStepExecutor, StepExecutionRequest
from stepwise.planning.executors.mock import MockStepExecutor
from stepwise.planning.models import (
    CompletionSource,
    PlanTrigger,
    StepSpec,
    TriggerOutcome,
)

OWNER = "agent-A"
SUBJECT = "user-U"


async def wait_for_calls(executor: MockStepExecutor, count: int) -> None:
    for _ in range(200):
        if len(executor.call_history) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"executor never reached {count} calls")


# =============================================================================
# Tests: onboarding scenario
# =============================================================================


@pytest.mark.asyncio
class TestOnboardingScenario:
    """Two steps, 0h then 24h, driven through queue deliveries."""

    async def test_first_trigger_armed_at_creation(
        self, service, scheduler, clock, onboarding_steps
    ):
        """Creating the plan arms one trigger with step 1's delay."""
        await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)

        pending = scheduler.pending()
        assert len(pending) == 1
        assert pending[0].next_visible_at == clock.now

    async def test_first_delivery_completes_step_one(
        self, service, engine, scheduler, executor, clock, onboarding_steps, deliver_one
    ):
        """Step 1 runs, is recorded, and step 2 is armed 24h out."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)

        delivery = await deliver_one()
        result = await engine.handle_trigger(delivery.trigger)
        assert await scheduler.acknowledge(delivery) is True

        assert result.outcome == TriggerOutcome.STEP_COMPLETED
        assert result.position == 1
        assert result.next_delivery is not None
        assert result.next_delivery.delivery_time == clock.now + timedelta(hours=24)

        stored = await service.get_plan(plan.id, OWNER)
        assert stored.history == ["done"]
        assert stored.steps[0].completed is True
        assert stored.steps[0].completed_at == clock.now
        assert stored.steps[1].completed is False
        assert await service.has_incomplete_steps(plan.id, OWNER) is True

        pending = scheduler.pending()
        assert len(pending) == 1
        assert pending[0].trigger == PlanTrigger(
            plan_id=plan.id, subject_key=SUBJECT, owner_key=OWNER
        )

        request = executor.call_history[0]
        assert request.description == "send welcome"
        assert request.history == []
        assert request.subject_key == SUBJECT
        assert request.owner_key == OWNER

    async def test_second_step_waits_for_delay(
        self, service, engine, scheduler, clock, onboarding_steps, deliver_one
    ):
        """Nothing is delivered before 24h have passed."""
        await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        delivery = await deliver_one()
        await engine.handle_trigger(delivery.trigger)
        await scheduler.acknowledge(delivery)

        clock.advance(hours=23, minutes=59)
        assert await scheduler.receive() == []

    async def test_plan_finishes_after_second_delivery(
        self, service, engine, scheduler, executor, clock, onboarding_steps, deliver_one
    ):
        """Step 2 runs after 24h, then the plan goes quiet."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        delivery = await deliver_one()
        await engine.handle_trigger(delivery.trigger)
        await scheduler.acknowledge(delivery)

        clock.advance(hours=24)
        delivery = await deliver_one()
        result = await engine.handle_trigger(delivery.trigger)
        await scheduler.acknowledge(delivery)

        assert result.outcome == TriggerOutcome.PLAN_FINISHED
        assert result.next_delivery is None
        assert await service.has_incomplete_steps(plan.id, OWNER) is False
        assert await service.get_history(plan.id, OWNER) == ["done", "done"]
        assert scheduler.pending() == []

        assert executor.call_history[1].description == "check in"
        assert executor.call_history[1].history == ["done"]


# =============================================================================
# Tests: benign no-ops
# =============================================================================


@pytest.mark.asyncio
class TestDiscardedTriggers:
    """Triggers that must not run anything."""

    async def test_missing_plan_is_discarded(self, engine, store, scheduler, executor):
        """Unknown plan: no executor call, no writes, no follow-up trigger."""
        trigger = PlanTrigger(plan_id=uuid4(), subject_key=SUBJECT, owner_key=OWNER)

        result = await engine.handle_trigger(trigger)

        assert result.outcome == TriggerOutcome.PLAN_NOT_FOUND
        assert executor.call_history == []
        assert scheduler.pending() == []
        assert await store.get(trigger.plan_id, OWNER) is None

    async def test_wrong_owner_is_treated_as_missing(
        self, service, engine, executor, onboarding_steps
    ):
        """Plans are partitioned by owner key."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        trigger = PlanTrigger(plan_id=plan.id, subject_key=SUBJECT, owner_key="agent-B")

        result = await engine.handle_trigger(trigger)

        assert result.outcome == TriggerOutcome.PLAN_NOT_FOUND
        assert executor.call_history == []

    async def test_finished_plan_is_discarded(
        self, service, engine, scheduler, executor, deliver_one
    ):
        """A plan completed out of band ignores its pending trigger."""
        plan = await service.create_plan(
            "Single", SUBJECT, OWNER, [StepSpec(description="only step")]
        )
        assert await service.complete_step(plan.id, OWNER, 1) is True

        delivery = await deliver_one()
        result = await engine.handle_trigger(delivery.trigger)
        await scheduler.acknowledge(delivery)

        assert result.outcome == TriggerOutcome.PLAN_DONE
        assert executor.call_history == []
        assert scheduler.pending() == []


# =============================================================================
# Tests: executor failures
# =============================================================================


@pytest.mark.asyncio
class TestExecutorFailures:
    """Failed steps commit nothing and rely on redelivery."""

    async def test_failure_raises_and_commits_nothing(
        self, service, engine, executor, onboarding_steps, deliver_one
    ):
        """Executor error surfaces as StepExecutionError; plan unchanged."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        executor.fail_next()

        delivery = await deliver_one()
        with pytest.raises(StepExecutionError) as exc_info:
            await engine.handle_trigger(delivery.trigger)

        assert exc_info.value.position == 1
        assert isinstance(exc_info.value.cause, RuntimeError)

        stored = await service.get_plan(plan.id, OWNER)
        assert stored.history == []
        assert stored.version == 0
        assert stored.steps[0].completed is False

    async def test_redelivery_retries_failed_step(
        self, service, engine, scheduler, executor, clock, onboarding_steps, deliver_one
    ):
        """An unacknowledged trigger comes back and the step then succeeds."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        executor.fail_next()

        delivery = await deliver_one()
        with pytest.raises(StepExecutionError):
            await engine.handle_trigger(delivery.trigger)

        clock.advance(seconds=61)
        redelivery = await deliver_one()
        assert redelivery.delivery_id == delivery.delivery_id
        assert redelivery.dequeue_count == 2

        result = await engine.handle_trigger(redelivery.trigger)

        assert result.outcome == TriggerOutcome.STEP_COMPLETED
        assert await service.get_history(plan.id, OWNER) == ["done"]

    async def test_timeout_raises(self, service, store, scheduler, lease, clock, deliver_one):
        """Executor exceeding its time budget is treated as a failure."""
        slow = MockStepExecutor(delay_seconds=1.0)
        engine = PlanExecutionEngine(
            store=store,
            scheduler=scheduler,
            executor=slow,
            config=EngineConfig(executor_timeout_seconds=0.05),
            lease=lease,
            clock=clock,
        )
        plan = await service.create_plan(
            "Slow", SUBJECT, OWNER, [StepSpec(description="slow step")]
        )

        delivery = await deliver_one()
        with pytest.raises(StepExecutionError) as exc_info:
            await engine.handle_trigger(delivery.trigger)

        assert isinstance(exc_info.value.cause, TimeoutError)
        assert (await store.get(plan.id, OWNER)).history == []

    async def test_lease_released_after_failure(
        self, service, engine, executor, lease, onboarding_steps, deliver_one
    ):
        """A failed attempt does not leave the plan leased."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        executor.fail_next()

        delivery = await deliver_one()
        with pytest.raises(StepExecutionError):
            await engine.handle_trigger(delivery.trigger)

        assert lease.is_locked(f"{OWNER}:{plan.id}") is False


# =============================================================================
# Tests: early triggers
# =============================================================================


@pytest.mark.asyncio
class TestEarlyTriggers:
    """Triggers arriving before a step's delay has elapsed."""

    async def test_early_trigger_is_rearmed(
        self, service, engine, scheduler, executor, clock, onboarding_steps, deliver_one
    ):
        """A stray trigger for step 2 re-arms for the remaining delay."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        delivery = await deliver_one()
        await engine.handle_trigger(delivery.trigger)
        await scheduler.acknowledge(delivery)

        clock.advance(hours=1)
        await service.schedule_next_step(plan.id, SUBJECT, OWNER, timedelta(0))
        stray = await deliver_one()
        result = await engine.handle_trigger(stray.trigger)

        assert result.outcome == TriggerOutcome.RESCHEDULED
        assert result.position == 2
        assert result.next_delivery.delivery_time == clock.now + timedelta(hours=23)
        assert len(executor.call_history) == 1

    async def test_step_delay_not_enforced_when_disabled(
        self, service, store, scheduler, executor, clock, onboarding_steps, deliver_one
    ):
        """With enforcement off, any delivered trigger runs the next step."""
        engine = PlanExecutionEngine(
            store=store,
            scheduler=scheduler,
            executor=executor,
            config=EngineConfig(enforce_step_delay=False),
            clock=clock,
        )
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        delivery = await deliver_one()
        await engine.handle_trigger(delivery.trigger)
        await scheduler.acknowledge(delivery)

        await service.schedule_next_step(plan.id, SUBJECT, OWNER, timedelta(0))
        stray = await deliver_one()
        result = await engine.handle_trigger(stray.trigger)

        assert result.outcome == TriggerOutcome.PLAN_FINISHED
        assert len(executor.call_history) == 2

    async def test_trigger_within_tolerance_runs(
        self, service, engine, executor, clock, deliver_one
    ):
        """Arriving slightly early (within tolerance) still executes."""
        steps = [StepSpec(description="later", delay=timedelta(seconds=30))]
        plan = await service.create_plan("Later", SUBJECT, OWNER, steps)

        clock.advance(seconds=29.5)
        await service.schedule_next_step(plan.id, SUBJECT, OWNER, timedelta(0))
        delivery = await deliver_one()
        result = await engine.handle_trigger(delivery.trigger)

        assert result.outcome == TriggerOutcome.PLAN_FINISHED
        assert len(executor.call_history) == 1


# =============================================================================
# Tests: duplicate triggers
# =============================================================================


@pytest.mark.asyncio
class TestDuplicateTriggers:
    """At-least-once delivery: the same trigger handled concurrently."""

    async def test_lease_blocks_second_executor_call(
        self, service, engine, executor, onboarding_steps
    ):
        """While one worker executes, a duplicate sees the lease held."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        trigger = PlanTrigger(plan_id=plan.id, subject_key=SUBJECT, owner_key=OWNER)
        executor.release.clear()

        first = asyncio.create_task(engine.handle_trigger(trigger))
        await wait_for_calls(executor, 1)

        second = await engine.handle_trigger(trigger)
        executor.release.set()
        first_result = await first

        assert second.outcome == TriggerOutcome.LEASE_HELD
        assert first_result.outcome == TriggerOutcome.STEP_COMPLETED
        assert len(executor.call_history) == 1
        assert await service.get_history(plan.id, OWNER) == ["done"]

    async def test_version_check_allows_single_commit(
        self, service, store, scheduler, executor, clock, onboarding_steps
    ):
        """Without a lease both run, but only one commits and re-arms."""
        engine = PlanExecutionEngine(
            store=store,
            scheduler=scheduler,
            executor=executor,
            config=EngineConfig(lease=PlanLeaseConfig(enabled=False)),
            clock=clock,
        )
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        trigger = PlanTrigger(plan_id=plan.id, subject_key=SUBJECT, owner_key=OWNER)
        executor.release.clear()

        tasks = [asyncio.create_task(engine.handle_trigger(trigger)) for _ in range(2)]
        await wait_for_calls(executor, 2)
        executor.release.set()
        results = await asyncio.gather(*tasks)

        outcomes = sorted(result.outcome.value for result in results)
        assert outcomes == ["commit_conflict", "step_completed"]

        stored = await store.get(plan.id, OWNER)
        assert stored.history == ["done"]
        assert stored.completed_count == 1

        # The creation trigger plus exactly one follow-up
        assert len(scheduler.pending()) == 1

    async def test_late_duplicate_after_commit_is_harmless(
        self, service, engine, scheduler, executor, clock, onboarding_steps, deliver_one
    ):
        """A duplicate delivered after step 1 committed does not rerun it."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        delivery = await deliver_one()
        await engine.handle_trigger(delivery.trigger)

        # The first consumer never acknowledged; the trigger is redelivered
        clock.advance(seconds=61)
        redelivery = await deliver_one()
        result = await engine.handle_trigger(redelivery.trigger)

        assert result.outcome == TriggerOutcome.RESCHEDULED
        assert len(executor.call_history) == 1
        assert await service.get_history(plan.id, OWNER) == ["done"]


# =============================================================================
# Tests: commit edge cases
# =============================================================================


@pytest.mark.asyncio
class TestCommit:
    """Commit retry and rejection."""

    async def test_concurrent_history_entry_is_kept(
        self, service, engine, executor, onboarding_steps
    ):
        """A manual history entry during execution forces a retry, not a loss."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        trigger = PlanTrigger(plan_id=plan.id, subject_key=SUBJECT, owner_key=OWNER)
        executor.release.clear()

        task = asyncio.create_task(engine.handle_trigger(trigger))
        await wait_for_calls(executor, 1)
        assert await service.append_history_entry(plan.id, OWNER, "user replied") is True
        executor.release.set()
        result = await task

        assert result.outcome == TriggerOutcome.STEP_COMPLETED
        assert await service.get_history(plan.id, OWNER) == ["user replied", "done"]

    async def test_step_completed_by_executor_tool(
        self, service, store, scheduler, lease, clock, onboarding_steps, deliver_one
    ):
        """An executor that completes its own step still gets its response
        recorded and the next step armed."""

        async def agent_turn(request: StepExecutionRequest) -> str:
            await service.complete_step(request.plan_id, request.owner_key, request.position)
            return "welcome sent"

        engine = PlanExecutionEngine(
            store=store,
            scheduler=scheduler,
            executor=FunctionStepExecutor(agent_turn),
            lease=lease,
            clock=clock,
        )
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        delivery = await deliver_one()
        await scheduler.acknowledge(delivery)

        result = await engine.handle_trigger(delivery.trigger)

        assert result.outcome == TriggerOutcome.STEP_COMPLETED
        assert result.next_delivery.delivery_time == clock.now + timedelta(hours=24)
        stored = await store.get(plan.id, OWNER)
        assert stored.history == ["welcome sent"]
        assert stored.steps[0].completed_by == CompletionSource.ENGINE
        assert stored.completed_count == 1
        assert await service.has_incomplete_steps(plan.id, OWNER) is True
        assert len(scheduler.pending()) == 1

    async def test_duplicates_after_out_of_band_completion(
        self, service, store, scheduler, executor, clock, onboarding_steps
    ):
        """Only one of two racing duplicates records its response."""
        engine = PlanExecutionEngine(
            store=store, scheduler=scheduler, executor=executor, clock=clock
        )
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        trigger = PlanTrigger(plan_id=plan.id, subject_key=SUBJECT, owner_key=OWNER)
        executor.release.clear()

        tasks = [asyncio.create_task(engine.handle_trigger(trigger)) for _ in range(2)]
        await wait_for_calls(executor, 2)
        assert await service.complete_step(plan.id, OWNER, 1) is True
        executor.release.set()
        results = await asyncio.gather(*tasks)

        assert sorted(r.outcome.value for r in results) == [
            "commit_conflict",
            "step_completed",
        ]
        assert await service.get_history(plan.id, OWNER) == ["done"]

    async def test_rejected_commit_does_not_rearm(
        self, service, engine, store, scheduler, onboarding_steps, deliver_one
    ):
        """A patch the store refuses ends handling without a follow-up trigger."""
        plan = await service.create_plan("Onboarding", SUBJECT, OWNER, onboarding_steps)
        delivery = await deliver_one()
        await scheduler.acknowledge(delivery)
        store.apply_patches = AsyncMock(return_value=None)

        result = await engine.handle_trigger(delivery.trigger)

        assert result.outcome == TriggerOutcome.COMMIT_REJECTED
        assert scheduler.pending() == []
        assert (await store.get(plan.id, OWNER)).history == []


# =============================================================================
# Tests: ordering
# =============================================================================


@pytest.mark.asyncio
class TestOrdering:
    """Steps complete strictly in position order."""

    async def test_steps_run_in_order(self, service, engine, scheduler, executor, clock, deliver_one):
        """Each delivery runs the first pending step only."""
        steps = [StepSpec.from_hours(f"step {n}", 1) for n in range(1, 4)]
        plan = await service.create_plan("Three", SUBJECT, OWNER, steps)

        for _ in steps:
            clock.advance(hours=1)
            delivery = await deliver_one()
            await engine.handle_trigger(delivery.trigger)
            await scheduler.acknowledge(delivery)

        assert [r.position for r in executor.call_history] == [1, 2, 3]
        assert await service.has_incomplete_steps(plan.id, OWNER) is False
        assert scheduler.pending() == []
