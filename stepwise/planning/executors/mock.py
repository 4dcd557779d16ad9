"""Mock step executor for testing."""

import asyncio
from typing import Any

from stepwise.planning.executors.base import StepExecutionRequest, StepExecutor


class MockStepExecutor(StepExecutor):
    """Mock step executor for testing.

    Returns configurable responses without running an agent. Can be told to
    fail a number of times, or to block until released, to exercise retry
    and duplicate-delivery paths.
    """

    def __init__(
        self,
        default_response: str = "Mock step result",
        responses: dict[str, str] | None = None,
        fail_times: int = 0,
        delay_seconds: float = 0.0,
    ):
        """Initialize mock executor.

        Args:
            default_response: Response when no description matches
            responses: Map of step description to response
            fail_times: Number of initial calls that raise RuntimeError
            delay_seconds: Simulated latency per call
        """
        self._default_response = default_response
        self._responses = responses or {}
        self._fail_times = fail_times
        self._delay_seconds = delay_seconds
        self._call_history: list[StepExecutionRequest] = []
        self.release = asyncio.Event()
        self.release.set()

    @property
    def executor_name(self) -> str:
        return "mock"

    @property
    def call_history(self) -> list[StepExecutionRequest]:
        """Requests received, for test assertions."""
        return self._call_history

    def set_response(self, description: str, response: str) -> None:
        """Set a response for a specific step description."""
        self._responses[description] = response

    def fail_next(self, times: int = 1) -> None:
        """Make the next `times` calls raise."""
        self._fail_times = times

    async def execute(self, request: StepExecutionRequest) -> str:
        self._call_history.append(request)

        await self.release.wait()
        if self._delay_seconds:
            await asyncio.sleep(self._delay_seconds)

        if self._fail_times > 0:
            self._fail_times -= 1
            raise RuntimeError(f"Mock failure for step {request.position}")

        return self._responses.get(request.description, self._default_response)

    def calls_for(self, **match: Any) -> list[StepExecutionRequest]:
        """Recorded requests whose fields equal the given values."""
        return [
            request
            for request in self._call_history
            if all(getattr(request, key) == value for key, value in match.items())
        ]
