"""Enums for the Recurring Task Engine.

This module defines the enums shared by the calculator, the stores and the
generation scheduler: recurrence patterns, template lifecycle states and
the kinds of errors a generation pass can report.
"""

from enum import Enum


class RecurrenceEnum(str, Enum):
    """Recurrence pattern for recurring tasks.

    Attributes:
        NONE: Task does not repeat.
        DAILY: Task repeats every `interval` days.
        WEEKLY: Task repeats every `interval` weeks.
        MONTHLY: Task repeats every `interval` calendar months.
        YEARLY: Task repeats every `interval` years.
    """
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TemplateStateEnum(str, Enum):
    """Lifecycle state of a template task.

    Attributes:
        ACTIVE: Template is generating occurrences.
        ENDED: End date exhausted; the row still exists but no longer generates.
    """
    ACTIVE = "active"
    ENDED = "ended"


class GenerationErrorKind(str, Enum):
    """Kind of failure reported for a template during a generation pass."""
    INVALID_PATTERN = "invalid_pattern"
    INVALID_INTERVAL = "invalid_interval"
    INVALID_END_DATE = "invalid_end_date"
    INVALID_OPERATION = "invalid_operation"
    CONCURRENT_GENERATION_IN_PROGRESS = "concurrent_generation_in_progress"
    PERSISTENCE_FAILURE = "persistence_failure"
    TEMPLATE_DELETED = "template_deleted"
    CHAIN_INTEGRITY_VIOLATION = "chain_integrity_violation"
    TASK_NOT_FOUND = "task_not_found"
    UNEXPECTED_ERROR = "unexpected_error"


# Patterns the due date calculator can step through
STEPPING_PATTERNS = (
    RecurrenceEnum.DAILY,
    RecurrenceEnum.WEEKLY,
    RecurrenceEnum.MONTHLY,
    RecurrenceEnum.YEARLY,
)
