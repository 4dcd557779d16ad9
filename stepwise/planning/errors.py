"""Planning error hierarchy.

Store and queue implementations wrap backend-specific errors in these
classes. A missing plan is never an error: lookups return None and patches
return False.
"""


class PlanningError(Exception):
    """Base exception for all planning errors."""


class InvalidArgumentError(PlanningError, ValueError):
    """Raised when caller input is malformed.

    Examples:
        - Plan created with zero steps
        - Step position below 1
        - Plan id that is not a UUID
    """


class StepExecutionError(PlanningError):
    """Raised when the step executor fails or times out.

    Nothing is committed for the step; the trigger is left unacknowledged so
    the queue redelivers it.
    """

    def __init__(
        self,
        message: str,
        position: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.position = position
        self.cause = cause


class StoreError(PlanningError):
    """Base exception for plan store errors."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class StoreConnectionError(StoreError):
    """Raised when the store backend is unreachable or fails mid-operation."""


class PlanConflictError(StoreError):
    """Raised when creating a plan whose id already exists."""


class PlanVersionConflictError(StoreError):
    """Raised when a conditional patch finds a different plan version.

    Signals that another writer (usually a duplicate trigger) committed
    first.
    """

    def __init__(
        self,
        message: str,
        expected_version: int,
        actual_version: int,
    ) -> None:
        super().__init__(message)
        self.expected_version = expected_version
        self.actual_version = actual_version


class QueueError(PlanningError):
    """Base exception for delay queue errors."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class QueueConnectionError(QueueError):
    """Raised when the queue backend is unreachable or fails mid-operation."""


class LeaseError(PlanningError):
    """Raised when the lease backend fails (not when a lease is held)."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause
