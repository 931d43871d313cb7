"""Error taxonomy for the task lifecycle engine and user-facing error classification."""

from enum import Enum

from pydantic import BaseModel


class TaskEngineError(Exception):
    """Base class for all task lifecycle errors."""

    code = "ERR_UNKNOWN"


class InvalidTransitionError(TaskEngineError):
    """A state machine rule was violated."""

    code = "ERR_INVALID_TRANSITION"

    def __init__(self, message: str, *, task_id: str | None = None, status: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.status = status


class PhotoRequiredError(TaskEngineError):
    """Completion was attempted without the mandatory photo proof."""

    code = "ERR_PHOTO_REQUIRED"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} requires a photo before it can be completed")
        self.task_id = task_id


class NotAuthorizedError(TaskEngineError):
    """The acting member lacks the role required for the operation."""

    code = "ERR_NOT_AUTHORIZED"

    def __init__(self, message: str, *, member_id: str | None = None) -> None:
        super().__init__(message)
        self.member_id = member_id


class InvalidRecurrenceError(TaskEngineError):
    """A recurrence pattern is malformed."""

    code = "ERR_INVALID_RECURRENCE"


class AlreadyProcessedError(TaskEngineError):
    """An idempotency guard tripped; the requested effect already happened."""

    code = "ERR_ALREADY_PROCESSED"

    def __init__(self, message: str, *, task_id: str | None = None, processed_by: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.processed_by = processed_by


class StoreConflictError(TaskEngineError):
    """The store rejected a write because the document changed underneath it."""

    code = "ERR_STORE_CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        record_id: str | None = None,
        expected_revision: int | None = None,
        actual_revision: int | None = None,
    ) -> None:
        super().__init__(message)
        self.record_id = record_id
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_INVALID_TRANSITION = InvalidTransitionError.code
    ERR_PHOTO_REQUIRED = PhotoRequiredError.code
    ERR_NOT_AUTHORIZED = NotAuthorizedError.code
    ERR_INVALID_RECURRENCE = InvalidRecurrenceError.code
    ERR_ALREADY_PROCESSED = AlreadyProcessedError.code
    ERR_STORE_CONFLICT = StoreConflictError.code
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_UNKNOWN = TaskEngineError.code


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, PhotoRequiredError):
        return ErrorResponse(
            code=ErrorCode.ERR_PHOTO_REQUIRED,
            message="This task needs a photo before it can be marked done.",
            suggestion="Take a photo of the finished task and submit it.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, NotAuthorizedError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_AUTHORIZED,
            message="You don't have permission for this action.",
            suggestion="Ask a parent in your family to do this.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, InvalidTransitionError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_TRANSITION,
            message="This action cannot be performed in the task's current state.",
            suggestion="Refresh the task list and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvalidRecurrenceError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_RECURRENCE,
            message="Invalid recurrence pattern.",
            suggestion="Use a daily pattern or a weekly pattern with at least one day selected.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, AlreadyProcessedError):
        return ErrorResponse(
            code=ErrorCode.ERR_ALREADY_PROCESSED,
            message="This task was already taken care of.",
            suggestion="No action needed.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, StoreConflictError):
        return ErrorResponse(
            code=ErrorCode.ERR_STORE_CONFLICT,
            message="This task was already updated on another device.",
            suggestion="Refresh the task and try again if it is still needed.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, KeyError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_FOUND,
            message="I couldn't find that task.",
            suggestion="It may have been deleted. Refresh the task list.",
            severity=ErrorSeverity.LOW,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
