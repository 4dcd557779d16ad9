"""Tests for step executors."""

from uuid import uuid4

import pytest

from stepwise.planning.executors import (
    FunctionStepExecutor,
    MockStepExecutor,
    StepExecutionRequest,
)


@pytest.fixture
def request_for():
    plan_id = uuid4()

    def _request(description: str = "send welcome", position: int = 1) -> StepExecutionRequest:
        return StepExecutionRequest(
            plan_id=plan_id,
            plan_name="Onboarding",
            position=position,
            description=description,
            history=["earlier"],
            subject_key="user-U",
            owner_key="agent-A",
        )

    return _request


@pytest.mark.asyncio
class TestFunctionStepExecutor:
    """Tests for the callable adapter."""

    async def test_delegates_to_handler(self, request_for):
        """The handler's return value is the step outcome."""
        seen = []

        async def handler(request: StepExecutionRequest) -> str:
            seen.append(request)
            return f"did {request.description} for {request.subject_key}"

        executor = FunctionStepExecutor(handler, name="agent")
        result = await executor.execute(request_for())

        assert result == "did send welcome for user-U"
        assert seen[0].history == ["earlier"]
        assert executor.executor_name == "agent"

    async def test_propagates_errors(self, request_for):
        """Handler exceptions are not swallowed."""

        async def handler(request: StepExecutionRequest) -> str:
            raise ValueError("no model")

        with pytest.raises(ValueError, match="no model"):
            await FunctionStepExecutor(handler).execute(request_for())


@pytest.mark.asyncio
class TestMockStepExecutor:
    """Tests for the mock executor."""

    async def test_default_response(self, request_for):
        """Returns the default response and records the call."""
        executor = MockStepExecutor(default_response="ok")

        assert await executor.execute(request_for()) == "ok"
        assert len(executor.call_history) == 1
        assert executor.executor_name == "mock"

    async def test_response_by_description(self, request_for):
        """Configured responses are matched by step description."""
        executor = MockStepExecutor(responses={"check in": "checked"})
        executor.set_response("send welcome", "welcomed")

        assert await executor.execute(request_for("check in", 2)) == "checked"
        assert await executor.execute(request_for("send welcome")) == "welcomed"

    async def test_fail_next(self, request_for):
        """Fails the requested number of times, then succeeds."""
        executor = MockStepExecutor(default_response="ok")
        executor.fail_next(2)

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await executor.execute(request_for())

        assert await executor.execute(request_for()) == "ok"
        assert len(executor.call_history) == 3

    async def test_calls_for(self, request_for):
        """Filters recorded requests by field values."""
        executor = MockStepExecutor()
        await executor.execute(request_for("one", 1))
        await executor.execute(request_for("two", 2))

        assert [r.description for r in executor.calls_for(position=2)] == ["two"]
