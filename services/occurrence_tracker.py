import logging
from datetime import datetime, timezone
from typing import Optional

from schemas import TaskRecord
from services.task_store import TaskStore
from utils.error_handler import InvalidOperationError, TaskNotFoundError

logger = logging.getLogger("app")


class OccurrenceTracker:
    """Completion bookkeeping for generated instances.

    Completion is occurrence-scoped: instances (and plain tasks) can be
    completed, templates never are. Every decision is taken on the stored
    row, not on the snapshot the caller hands in.
    """

    def __init__(self, store: TaskStore):
        self.store = store

    def mark_completed(self, instance: TaskRecord, when: Optional[datetime] = None) -> TaskRecord:
        """Mark an instance completed at `when`.

        Args:
            instance: The instance to complete
            when: Completion timestamp, defaults to now (UTC)

        Returns:
            The updated instance. An instance that is already completed is
            returned as stored, with its original completion time.

        Raises:
            InvalidOperationError: `instance` is a template
            TaskNotFoundError: the instance no longer exists
        """
        stored = self._load(instance)
        self._reject_template(stored, "completed")

        if stored.completed:
            logger.debug(f"Task {stored.id} already completed at {stored.completed_at}")
            return stored

        when = when or datetime.now(timezone.utc)
        updated = self.store.save_completion(stored.id, True, when)
        logger.info(f"Task {stored.id} completed (occurrence {stored.due_date})")
        return updated

    def reopen(self, instance: TaskRecord) -> TaskRecord:
        """Clear the completion of an instance. Reopening an open instance is a no-op."""
        stored = self._load(instance)
        self._reject_template(stored, "reopened")

        if not stored.completed:
            return stored

        updated = self.store.save_completion(stored.id, False, None)
        logger.info(f"Task {stored.id} reopened (occurrence {stored.due_date})")
        return updated

    def _load(self, instance: TaskRecord) -> TaskRecord:
        stored = self.store.find_task(instance.id)
        if stored is None:
            raise TaskNotFoundError(f"Task {instance.id} not found", instance.id)
        return stored

    @staticmethod
    def _reject_template(task: TaskRecord, action: str) -> None:
        if task.is_template:
            raise InvalidOperationError(
                f"Task {task.id} is a recurring template and cannot be {action}; "
                f"complete one of its occurrences instead",
                task.id,
            )
