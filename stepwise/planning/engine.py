"""Plan execution engine.

Advances one plan per delivered trigger:
1. Load the plan; missing or finished plans are discarded
2. Pick the first pending step (the only eligible one)
3. Re-arm instead of executing if the step's delay has not elapsed yet
4. Run the step executor under the plan lease
5. Commit history entry + completion flag in one conditional patch
6. Arm the next step's trigger, or stop when the plan is done

Triggers arrive at-least-once, so every path must be safe to repeat. An
executor failure raises before anything is committed, leaving redelivery as
the only retry mechanism.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from stepwise.config.models.engine import EngineConfig
from stepwise.observability.logging import get_logger
from stepwise.observability.metrics import (
    COMMIT_CONFLICTS,
    STEP_EXECUTION_FAILURES,
    STEP_EXECUTION_LATENCY,
    TRIGGERS_HANDLED,
)
from stepwise.planning.errors import (
    PlanVersionConflictError,
    StepExecutionError,
    StoreError,
)
from stepwise.planning.executors.base import StepExecutionRequest, StepExecutor
from stepwise.planning.lease import PlanLease, build_plan_key
from stepwise.planning.models import (
    AppendHistory,
    CompletionSource,
    DeliveryHandle,
    Plan,
    PlanTrigger,
    SetStepCompleted,
    Step,
    TriggerOutcome,
    TriggerResult,
    utc_now,
)
from stepwise.planning.queue import DelayScheduler
from stepwise.planning.store import PlanStore

logger = get_logger(__name__)

MAX_COMMIT_ATTEMPTS = 3


class PlanExecutionEngine:
    """Orchestrates step execution for delivered plan triggers.

    All collaborators are passed in explicitly. The lease is optional; with
    neither lease nor optimistic concurrency, two duplicate triggers racing
    on the same plan may both run the executor and both append history.
    """

    def __init__(
        self,
        store: PlanStore,
        scheduler: DelayScheduler,
        executor: StepExecutor,
        config: EngineConfig | None = None,
        lease: PlanLease | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize engine.

        Args:
            store: Plan persistence store
            scheduler: Delay queue for follow-up triggers
            executor: Performs the work of each step
            config: Engine configuration
            lease: Per-plan lease held while executing (optional)
            clock: Time source, injectable for tests
        """
        self._store = store
        self._scheduler = scheduler
        self._executor = executor
        self._config = config or EngineConfig()
        self._lease = lease
        self._clock = clock

    async def handle_trigger(self, trigger: PlanTrigger) -> TriggerResult:
        """Advance the plan referenced by a trigger by at most one step.

        Returns:
            What was done with the trigger. Every outcome means the trigger
            may be acknowledged.

        Raises:
            StepExecutionError: Executor failed; nothing was committed
            StoreError / QueueError: Backend failure; safe to redeliver
        """
        with structlog.contextvars.bound_contextvars(
            plan_id=str(trigger.plan_id),
            owner_key=trigger.owner_key,
        ):
            if self._lease is None:
                return await self._advance(trigger)

            async with self._lease.acquire(
                build_plan_key(trigger.owner_key, trigger.plan_id)
            ) as acquired:
                if not acquired:
                    logger.info("plan_lease_held")
                    return self._result(TriggerOutcome.LEASE_HELD, trigger)
                return await self._advance(trigger)

    async def _advance(self, trigger: PlanTrigger) -> TriggerResult:
        plan = await self._store.get(trigger.plan_id, trigger.owner_key)
        if plan is None:
            logger.warning("plan_trigger_plan_not_found")
            return self._result(TriggerOutcome.PLAN_NOT_FOUND, trigger)

        step = plan.next_pending_step()
        if step is None:
            logger.info("plan_trigger_plan_done", steps=len(plan.steps))
            return self._result(TriggerOutcome.PLAN_DONE, trigger)

        if self._config.enforce_step_delay:
            remaining = plan.eligible_at(step) - self._clock()
            if remaining > timedelta(seconds=self._config.schedule_tolerance_seconds):
                handle = await self._scheduler.schedule(trigger, remaining)
                logger.info(
                    "plan_trigger_early",
                    position=step.position,
                    remaining_seconds=remaining.total_seconds(),
                )
                return self._result(
                    TriggerOutcome.RESCHEDULED, trigger, step.position, handle
                )

        response = await self._execute_step(plan, step)
        updated = await self._commit_step(plan, step, response)
        if isinstance(updated, TriggerResult):
            return updated

        next_step = updated.next_pending_step()
        if next_step is None:
            logger.info(
                "plan_finished",
                position=step.position,
                history_length=len(updated.history),
            )
            return self._result(TriggerOutcome.PLAN_FINISHED, trigger, step.position)

        handle = await self._scheduler.schedule(trigger, next_step.delay)
        logger.info(
            "plan_step_completed",
            position=step.position,
            next_position=next_step.position,
            next_delivery=handle.delivery_time.isoformat(),
        )
        return self._result(
            TriggerOutcome.STEP_COMPLETED, trigger, step.position, handle
        )

    async def _execute_step(self, plan: Plan, step: Step) -> str:
        request = StepExecutionRequest(
            plan_id=plan.id,
            plan_name=plan.name,
            position=step.position,
            description=step.description,
            history=list(plan.history),
            subject_key=plan.subject_key,
            owner_key=plan.owner_key,
        )

        logger.info(
            "plan_step_execution_started",
            position=step.position,
            executor=self._executor.executor_name,
        )

        started = time.perf_counter()
        try:
            if self._config.executor_timeout_seconds is None:
                response = await self._executor.execute(request)
            else:
                response = await asyncio.wait_for(
                    self._executor.execute(request),
                    timeout=self._config.executor_timeout_seconds,
                )
        except TimeoutError as e:
            STEP_EXECUTION_FAILURES.labels(reason="timeout").inc()
            logger.error(
                "plan_step_execution_timeout",
                position=step.position,
                timeout_seconds=self._config.executor_timeout_seconds,
            )
            raise StepExecutionError(
                f"Step {step.position} timed out", position=step.position, cause=e
            ) from e
        except Exception as e:
            STEP_EXECUTION_FAILURES.labels(reason="error").inc()
            logger.error(
                "plan_step_execution_failed",
                position=step.position,
                error=str(e),
            )
            raise StepExecutionError(
                f"Step {step.position} failed: {e}", position=step.position, cause=e
            ) from e
        finally:
            STEP_EXECUTION_LATENCY.observe(time.perf_counter() - started)

        return response

    async def _commit_step(
        self,
        plan: Plan,
        step: Step,
        response: str,
    ) -> Plan | TriggerResult:
        """Persist the step outcome; returns the updated plan or a terminal result."""
        trigger = PlanTrigger(
            plan_id=plan.id,
            subject_key=plan.subject_key,
            owner_key=plan.owner_key,
        )
        patches = [
            AppendHistory(entry=response),
            SetStepCompleted(
                position=step.position,
                completed_at=self._clock(),
                completed_by=CompletionSource.ENGINE,
            ),
        ]
        expected_version = plan.version if self._config.optimistic_concurrency else None

        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            try:
                updated = await self._store.apply_patches(
                    plan.id,
                    plan.owner_key,
                    patches,
                    expected_version=expected_version,
                )
            except PlanVersionConflictError as e:
                current = await self._store.get(plan.id, plan.owner_key)
                current_step = current.step_at(step.position) if current else None
                if current_step is None:
                    break
                if (
                    current_step.completed
                    and current_step.completed_by == CompletionSource.ENGINE
                ):
                    COMMIT_CONFLICTS.inc()
                    logger.warning(
                        "plan_step_commit_conflict",
                        position=step.position,
                        expected_version=e.expected_version,
                        actual_version=e.actual_version,
                    )
                    return self._result(
                        TriggerOutcome.COMMIT_CONFLICT, trigger, step.position
                    )
                # Plan changed elsewhere (a manual history entry, or the step
                # completed out of band, often by the executor itself through
                # a planning tool); the response is still ours to record.
                logger.debug(
                    "plan_step_commit_retry",
                    position=step.position,
                    attempt=attempt,
                    completed_out_of_band=current_step.completed,
                )
                expected_version = current.version
                continue

            if updated is not None:
                return updated
            break
        else:
            raise StoreError(
                f"Plan {plan.id} step {step.position} commit kept conflicting"
            )

        logger.warning("plan_step_commit_rejected", position=step.position)
        return self._result(TriggerOutcome.COMMIT_REJECTED, trigger, step.position)

    def _result(
        self,
        outcome: TriggerOutcome,
        trigger: PlanTrigger,
        position: int | None = None,
        next_delivery: DeliveryHandle | None = None,
    ) -> TriggerResult:
        TRIGGERS_HANDLED.labels(outcome=outcome.value).inc()
        return TriggerResult(
            outcome=outcome,
            plan_id=trigger.plan_id,
            position=position,
            next_delivery=next_delivery,
        )
