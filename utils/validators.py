"""Recurrence Definition Validation.

The owning workflow validates a recurrence definition when a template is
created or updated; the stores run the same checks in `add_template`.

Rules:
- Pattern must be daily, weekly, monthly or yearly
- Interval must be a positive integer
- End date, when set, must not precede the template's creation date
- First occurrence must not lie after the end date
"""

from datetime import date
from typing import Optional

from schemas import RecurrenceDescriptor, TemplateCreate
from utils.error_handler import InvalidEndDateError
from utils.recurrence_calculator import RecurrenceCalculator


def validate_recurrence(descriptor: RecurrenceDescriptor, created_on: Optional[date] = None) -> None:
    """Validate a recurrence descriptor.

    Args:
        descriptor: Pattern, interval and optional end date
        created_on: Creation date of the template the descriptor belongs to

    Raises:
        InvalidPatternError, InvalidIntervalError, InvalidEndDateError
    """
    RecurrenceCalculator.parse_pattern(descriptor.pattern)
    RecurrenceCalculator.validate_interval(descriptor.interval)

    if descriptor.end_date is not None and created_on is not None and descriptor.end_date < created_on:
        raise InvalidEndDateError(
            f"Recurrence end date {descriptor.end_date} is before the creation date {created_on}"
        )


def validate_template(template: TemplateCreate, created_on: date) -> None:
    """Validate a template before it is stored.

    Args:
        template: Template definition from the owning workflow
        created_on: Date the template is being created

    Raises:
        InvalidPatternError, InvalidIntervalError, InvalidEndDateError
    """
    validate_recurrence(template.recurrence, created_on)

    end_date = template.recurrence.end_date
    if end_date is not None and template.next_due_date > end_date:
        raise InvalidEndDateError(
            f"First occurrence {template.next_due_date} falls after the end date {end_date}"
        )
