"""Recurrence Calculator for Next Due Date Computation.

This module provides the calendar arithmetic behind recurring tasks: given
the current occurrence date, a recurrence pattern and an interval it returns
the next occurrence date.

Supports:
- Daily recurrence (every N days)
- Weekly recurrence (every N * 7 days)
- Monthly recurrence (every N calendar months, clamped to the month's last day)
- Yearly recurrence (every N years, Feb 29 clamped to Feb 28)

All arithmetic is on calendar dates. Timestamps are first mapped onto a
single reference timezone with `to_reference_date`.
"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from enums import RecurrenceEnum, STEPPING_PATTERNS
from utils.error_handler import InvalidIntervalError, InvalidPatternError

logger = logging.getLogger("app")


class RecurrenceCalculator:
    """Calculator for the next occurrence of recurring tasks."""

    @staticmethod
    def calculate_next_due_date(
        current_due_date: date,
        pattern: Union[RecurrenceEnum, str],
        interval: int = 1,
    ) -> date:
        """Calculate the occurrence date that follows `current_due_date`.

        Args:
            current_due_date: The current occurrence date
            pattern: Recurrence pattern ("daily", "weekly", "monthly", "yearly")
            interval: Number of pattern steps to advance (>= 1)

        Returns:
            Next occurrence date, always strictly after `current_due_date`

        Raises:
            InvalidPatternError: pattern is not one of the four stepping patterns
            InvalidIntervalError: interval is not a positive integer
        """
        recurrence = RecurrenceCalculator.parse_pattern(pattern)
        RecurrenceCalculator.validate_interval(interval)

        if isinstance(current_due_date, datetime):
            current_due_date = current_due_date.date()

        # relativedelta clamps to the last day of the target month,
        # which covers Jan 31 -> Feb 28/29 and Feb 29 -> Feb 28.
        if recurrence == RecurrenceEnum.DAILY:
            step = relativedelta(days=interval)
        elif recurrence == RecurrenceEnum.WEEKLY:
            step = relativedelta(days=interval * 7)
        elif recurrence == RecurrenceEnum.MONTHLY:
            step = relativedelta(months=interval)
        else:
            step = relativedelta(years=interval)

        try:
            return current_due_date + step
        except (OverflowError, ValueError) as e:
            raise InvalidIntervalError(
                f"Advancing {current_due_date} by {interval} {recurrence.value} step(s) "
                f"leaves the supported calendar range: {e}"
            )

    @staticmethod
    def parse_pattern(pattern: Union[RecurrenceEnum, str, None]) -> RecurrenceEnum:
        """Return the stepping pattern for `pattern` or raise InvalidPatternError."""
        if isinstance(pattern, RecurrenceEnum):
            recurrence = pattern
        else:
            try:
                recurrence = RecurrenceEnum(str(pattern).lower().strip())
            except ValueError:
                raise InvalidPatternError(f"Unknown recurrence pattern: {pattern!r}")

        if recurrence not in STEPPING_PATTERNS:
            raise InvalidPatternError(f"Recurrence pattern {recurrence.value!r} cannot be stepped")
        return recurrence

    @staticmethod
    def validate_interval(interval) -> None:
        # bool is an int subclass; True is not a meaningful interval
        if isinstance(interval, bool) or not isinstance(interval, int):
            raise InvalidIntervalError(f"Recurrence interval must be an integer, got {interval!r}")
        if interval < 1:
            raise InvalidIntervalError(f"Recurrence interval must be at least 1, got {interval}")

    @staticmethod
    def is_valid_pattern(pattern: Union[RecurrenceEnum, str, None]) -> bool:
        """Check if a recurrence pattern can be stepped.

        Args:
            pattern: The pattern to validate

        Returns:
            True if valid, False otherwise
        """
        try:
            RecurrenceCalculator.parse_pattern(pattern)
        except InvalidPatternError:
            return False
        return True

    @staticmethod
    def preview_occurrences(
        start_date: date,
        pattern: Union[RecurrenceEnum, str],
        interval: int = 1,
        end_date: Optional[date] = None,
        count: int = 5,
    ) -> List[date]:
        """Calculate upcoming occurrences for display, starting at `start_date`.

        Args:
            start_date: First occurrence to include (a template's next due date)
            pattern: Recurrence pattern
            interval: Recurrence interval
            end_date: Last date an occurrence may fall on
            count: Maximum number of occurrences to return

        Returns:
            List of occurrence dates in ascending order
        """
        occurrences = []
        current = start_date

        while len(occurrences) < count:
            if end_date is not None and current > end_date:
                break
            occurrences.append(current)
            current = RecurrenceCalculator.calculate_next_due_date(current, pattern, interval)

        return occurrences


def to_reference_date(
    moment: Union[datetime, date, None],
    timezone_name: str = "UTC",
) -> date:
    """Map a pass timestamp onto a calendar date in the reference timezone.

    Args:
        moment: Timestamp or date of the generation pass (None means now)
        timezone_name: IANA name of the reference timezone

    Returns:
        The calendar date of `moment` in the reference timezone.
        Naive datetimes are taken to be in the reference timezone already.
    """
    reference_tz = ZoneInfo(timezone_name)

    if moment is None:
        moment = datetime.now(timezone.utc)

    if isinstance(moment, datetime):
        if moment.tzinfo is None:
            return moment.date()
        return moment.astimezone(reference_tz).date()

    return moment
