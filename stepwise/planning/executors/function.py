"""Executor adapter around a plain async callable."""

from collections.abc import Awaitable, Callable

from stepwise.planning.executors.base import StepExecutionRequest, StepExecutor

StepHandler = Callable[[StepExecutionRequest], Awaitable[str]]


class FunctionStepExecutor(StepExecutor):
    """Delegates each step to an async function.

    Lets an agent runtime plug in its own turn runner without subclassing:

        async def run_turn(request: StepExecutionRequest) -> str:
            return await agent.chat(request.description, ...)

        executor = FunctionStepExecutor(run_turn, name="agent")
    """

    def __init__(self, handler: StepHandler, name: str = "function") -> None:
        self._handler = handler
        self._name = name

    @property
    def executor_name(self) -> str:
        return self._name

    async def execute(self, request: StepExecutionRequest) -> str:
        return await self._handler(request)
