"""Read-only view of recurring task chains.

A chain is a template plus the instances generated from it. Chains are
flat: an instance points at its template through `original_task_id` and
the template itself points nowhere.
"""

import logging
from datetime import date
from typing import List, Optional, Set

from schemas import TaskRecord
from services.task_store import TaskStore
from utils.error_handler import ChainIntegrityViolation

logger = logging.getLogger("app")


class TaskChain:
    def __init__(self, store: TaskStore):
        self.store = store

    def resolve_chain(self, instance_id: int) -> Optional[TaskRecord]:
        """Return the template that generated `instance_id`.

        Returns None for unknown ids, templates, plain tasks and instances
        whose template was deleted.

        Raises:
            ChainIntegrityViolation: the referenced row is itself an instance
                or is not a recurring template
        """
        instance = self.store.find_task(instance_id)
        if instance is None or instance.original_task_id is None:
            return None

        origin = self.store.find_task(instance.original_task_id)
        if origin is None:
            logger.warning(f"Task {instance_id} points at missing template {instance.original_task_id}")
            return None

        if origin.original_task_id is not None:
            raise ChainIntegrityViolation(
                f"Task {instance_id} resolves to task {origin.id}, which itself points at "
                f"task {origin.original_task_id}; chains must be one level deep",
                instance_id,
            )
        if not origin.is_template:
            raise ChainIntegrityViolation(
                f"Task {instance_id} resolves to task {origin.id}, which is not a recurring template",
                instance_id,
            )
        return origin

    def list_instances(self, template_id: int) -> List[TaskRecord]:
        """Instances of a template in occurrence order."""
        return self.store.find_instances(template_id)

    def completed_occurrence_dates(self, template_id: int) -> Set[date]:
        return {
            instance.due_date
            for instance in self.store.find_instances(template_id)
            if instance.completed and instance.due_date is not None
        }

    def completion_streak(self, template_id: int, today: date) -> int:
        """Count consecutive completed occurrences ending at the latest one due by `today`.

        An open occurrence dated `today` does not break the streak; it is
        still completable.
        """
        streak = 0
        past = [
            instance for instance in self.store.find_instances(template_id)
            if instance.due_date is not None and instance.due_date <= today
        ]

        for instance in reversed(past):
            if instance.completed:
                streak += 1
            elif instance.due_date == today and streak == 0:
                continue
            else:
                break
        return streak
