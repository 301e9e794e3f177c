# ========================================================================
# Recurring Task Generation Scheduler
# ========================================================================
# Turns due templates into dated task instances, one transactional step
# per occurrence, under a single-flight generation lock.
# ========================================================================

import logging
import time
from datetime import date, datetime
from typing import Callable, Optional, Union

from enums import GenerationErrorKind
from schemas import GenerationError, GenerationPassResult, InstanceCreate, TaskRecord
from services.generation_lock import GenerationLock, ProcessGenerationLock
from services.task_store import TaskStore
from utils.error_handler import RecurrenceError, describe_error
from utils.recurrence_calculator import RecurrenceCalculator, to_reference_date

logger = logging.getLogger(__name__)


class GenerationScheduler:
    """Generates occurrences for every due template in one pass.

    Attributes:
        store: Persistence collaborator
        lock: Single-flight lock shared by every pass that may overlap
        max_catch_up_per_template: Most instances one template may produce per pass
        pass_time_budget: Seconds after which remaining templates wait for the next pass
        reference_timezone: Timezone in which `now` is turned into a calendar date
    """

    def __init__(
        self,
        store: TaskStore,
        lock: Optional[GenerationLock] = None,
        max_catch_up_per_template: int = 30,
        pass_time_budget: Optional[float] = None,
        reference_timezone: str = "UTC",
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_catch_up_per_template < 1:
            raise ValueError("max_catch_up_per_template must be at least 1")
        self.store = store
        self.lock = lock or ProcessGenerationLock()
        self.max_catch_up_per_template = max_catch_up_per_template
        self.pass_time_budget = pass_time_budget
        self.reference_timezone = reference_timezone
        self.clock = clock

    def run_generation_pass(self, now: Union[datetime, date, None] = None) -> GenerationPassResult:
        """Run one generation pass over all templates due at `now`.

        Raises ConcurrentGenerationInProgress when another pass holds the lock.
        Every other failure is recorded per template in the result.
        """
        today = to_reference_date(now, self.reference_timezone)
        result = GenerationPassResult(reference_date=today)

        with self.lock.hold():
            started = self.clock()
            templates = self.store.find_due_templates(today)
            logger.info(f"Generation pass for {today}: {len(templates)} due template(s)")

            for template in templates:
                if self._budget_exhausted(started):
                    result.budget_exhausted = True
                    logger.warning(
                        f"Pass time budget of {self.pass_time_budget}s used up; "
                        f"{len(templates) - result.templates_processed} template(s) left for the next pass"
                    )
                    break

                result.templates_processed += 1
                try:
                    self._generate_for_template(template, today, result)
                except RecurrenceError as e:
                    logger.error(f"Template {template.id} failed: {e.kind.value}: {e.message}")
                    result.per_template_errors.append(
                        GenerationError(template_id=template.id, kind=e.kind, message=e.message)
                    )
                except Exception as e:
                    logger.exception(f"Unexpected error generating template {template.id}")
                    result.per_template_errors.append(
                        GenerationError(
                            template_id=template.id,
                            kind=GenerationErrorKind.UNEXPECTED_ERROR,
                            message=describe_error(e),
                        )
                    )

                if not self.lock.renew():
                    result.lock_lost = True
                    logger.error(f"Generation lock lost after template {template.id}; stopping the pass")
                    break

        logger.info(
            f"Generation pass for {today} done: {result.generated_count} generated, "
            f"{len(result.per_template_errors)} template error(s)"
        )
        return result

    def _budget_exhausted(self, started: float) -> bool:
        if self.pass_time_budget is None:
            return False
        return self.clock() - started >= self.pass_time_budget

    def _generate_for_template(self, template: TaskRecord, today: date, result: GenerationPassResult) -> None:
        """Generate occurrences for one template until caught up, ended or capped."""
        generated = 0
        current = template

        while self._is_due(current, today):
            if generated >= self.max_catch_up_per_template:
                logger.warning(
                    f"Template {template.id} hit the catch-up cap of {self.max_catch_up_per_template}; "
                    f"backlog from {current.next_due_date} left for the next pass"
                )
                break

            instance, current = self._generate_occurrence(current)
            generated += 1
            result.generated_count += 1
            result.generated_task_ids.append(instance.id)

        if generated:
            logger.info(
                f"Template {template.id}: generated {generated} occurrence(s), "
                f"next due {current.next_due_date}, active={current.is_recurring}"
            )

    @staticmethod
    def _is_due(template: TaskRecord, today: date) -> bool:
        return (
            template.is_recurring
            and template.next_due_date is not None
            and template.next_due_date <= today
            and (template.recurrence_end_date is None or template.next_due_date <= template.recurrence_end_date)
        )

    def _generate_occurrence(self, template: TaskRecord):
        """Emit the instance for template.next_due_date and advance the template, atomically.

        Returns the stored instance and the advanced template snapshot.
        """
        occurrence_date = template.next_due_date
        try:
            advanced = RecurrenceCalculator.calculate_next_due_date(
                occurrence_date,
                template.recurrence_pattern,
                template.recurrence_interval,
            )
        except RecurrenceError as e:
            e.task_id = template.id
            raise

        still_active = template.recurrence_end_date is None or advanced <= template.recurrence_end_date
        advanced_template = template.model_copy(update={
            "next_due_date": advanced,
            "is_recurring": still_active,
        })

        instance = InstanceCreate(
            user_id=template.user_id,
            title=template.title,
            description=template.description,
            category=template.category,
            priority=template.priority,
            due_date=occurrence_date,
            original_task_id=template.id,
        )

        created = self.store.insert_instance_and_advance_template(instance, advanced_template)
        if not still_active:
            logger.info(f"Template {template.id} ended after occurrence {occurrence_date}")
        return created, advanced_template
