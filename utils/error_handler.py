"""
Error taxonomy for the recurring task engine.

Every error carries a `GenerationErrorKind` so the scheduler can report
per-template failures without losing what went wrong.
"""

from typing import Optional

from enums import GenerationErrorKind


class RecurrenceError(Exception):
    """Base exception for recurrence and generation failures."""

    kind = GenerationErrorKind.UNEXPECTED_ERROR

    def __init__(self, message: str, task_id: Optional[int] = None):
        self.message = message
        self.task_id = task_id
        super().__init__(self.message)


class InvalidPatternError(RecurrenceError):
    """Pattern is not one of daily, weekly, monthly or yearly."""
    kind = GenerationErrorKind.INVALID_PATTERN


class InvalidIntervalError(RecurrenceError):
    """Interval is not a positive integer."""
    kind = GenerationErrorKind.INVALID_INTERVAL


class InvalidEndDateError(RecurrenceError):
    """End date lies before the template's creation date."""
    kind = GenerationErrorKind.INVALID_END_DATE


class InvalidOperationError(RecurrenceError):
    """Operation does not apply to this kind of task (e.g. completing a template)."""
    kind = GenerationErrorKind.INVALID_OPERATION


class ConcurrentGenerationInProgress(RecurrenceError):
    """Another generation pass holds the generation lock."""
    kind = GenerationErrorKind.CONCURRENT_GENERATION_IN_PROGRESS

    def __init__(self, message: str = "A generation pass is already running"):
        super().__init__(message)


class PersistenceFailure(RecurrenceError):
    """A transactional step failed and was rolled back."""
    kind = GenerationErrorKind.PERSISTENCE_FAILURE


class TemplateDeletedError(RecurrenceError):
    """The template was removed before its occurrence could be generated."""
    kind = GenerationErrorKind.TEMPLATE_DELETED


class ChainIntegrityViolation(RecurrenceError):
    """An instance points at a row that is not a depth-0 template."""
    kind = GenerationErrorKind.CHAIN_INTEGRITY_VIOLATION


class TaskNotFoundError(RecurrenceError):
    """No task exists with the requested id."""
    kind = GenerationErrorKind.TASK_NOT_FOUND


def describe_error(error: Exception) -> str:
    """Return a one-line description suitable for pass results and logs."""
    if isinstance(error, RecurrenceError):
        return error.message
    return f"{type(error).__name__}: {error}"
