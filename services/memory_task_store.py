import logging
import threading
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from enums import RecurrenceEnum
from schemas import InstanceCreate, TaskRecord, TemplateCreate
from services.task_store import TaskStore
from utils.error_handler import PersistenceFailure, TaskNotFoundError, TemplateDeletedError
from utils.validators import validate_template

logger = logging.getLogger("app")


class InMemoryTaskStore(TaskStore):
    """Process-local TaskStore keeping TaskRecord snapshots in a dict.

    A single mutex makes every write atomic. Records handed out are copies,
    so callers never mutate stored state directly.
    """

    def __init__(self):
        self._tasks: Dict[int, TaskRecord] = {}
        self._next_id = 1
        self._mutex = threading.RLock()

    def _allocate_id(self) -> int:
        task_id = self._next_id
        self._next_id += 1
        return task_id

    def put(self, record: TaskRecord) -> TaskRecord:
        """Store a raw record as-is, bypassing validation (for fixtures and imports)."""
        with self._mutex:
            self._tasks[record.id] = record.model_copy()
            self._next_id = max(self._next_id, record.id + 1)
            return record.model_copy()

    def find_due_templates(self, today: date) -> List[TaskRecord]:
        with self._mutex:
            due = [
                task.model_copy()
                for task in self._tasks.values()
                if task.original_task_id is None
                and task.is_recurring
                and task.next_due_date is not None
                and task.next_due_date <= today
                and (task.recurrence_end_date is None or task.next_due_date <= task.recurrence_end_date)
            ]
        return sorted(due, key=lambda task: (task.next_due_date, task.id))

    def find_template(self, template_id: int) -> Optional[TaskRecord]:
        task = self.find_task(template_id)
        return task if task is not None and task.is_template else None

    def find_task(self, task_id: int) -> Optional[TaskRecord]:
        with self._mutex:
            task = self._tasks.get(task_id)
            return task.model_copy() if task else None

    def find_instances(self, template_id: int) -> List[TaskRecord]:
        with self._mutex:
            instances = [
                task.model_copy() for task in self._tasks.values()
                if task.original_task_id == template_id
            ]
        return sorted(instances, key=lambda task: (task.due_date, task.id))

    def insert_instance_and_advance_template(self, instance: InstanceCreate, template: TaskRecord) -> TaskRecord:
        with self._mutex:
            stored = self._tasks.get(template.id)
            if stored is None:
                raise TemplateDeletedError(f"Template {template.id} no longer exists", template.id)
            if not stored.is_recurring or stored.next_due_date != instance.due_date:
                raise PersistenceFailure(
                    f"Template {template.id} moved on to {stored.next_due_date} "
                    f"(active={stored.is_recurring}) before occurrence {instance.due_date} was written",
                    template.id,
                )
            duplicate = any(
                task.original_task_id == template.id and task.due_date == instance.due_date
                for task in self._tasks.values()
            )
            if duplicate:
                raise PersistenceFailure(
                    f"Template {template.id} already has an instance for {instance.due_date}",
                    template.id,
                )

            now = datetime.now(timezone.utc)
            created = TaskRecord(
                id=self._allocate_id(),
                created_at=now,
                is_recurring=False,
                recurrence_pattern=RecurrenceEnum.NONE.value,
                **instance.model_dump(),
            )
            self._tasks[created.id] = created
            self._tasks[stored.id] = stored.model_copy(update={
                "next_due_date": template.next_due_date,
                "is_recurring": template.is_recurring,
                "updated_at": now,
            })
            return created.model_copy()

    def delete_template(self, template_id: int, cascade_instances: bool = False) -> bool:
        with self._mutex:
            stored = self._tasks.get(template_id)
            if stored is None or not stored.is_template:
                return False
            for task_id, task in list(self._tasks.items()):
                if task.original_task_id != template_id:
                    continue
                if cascade_instances:
                    del self._tasks[task_id]
                else:
                    self._tasks[task_id] = task.model_copy(update={"original_task_id": None})
            del self._tasks[template_id]
        logger.info(f"Deleted template {template_id} (cascade_instances={cascade_instances})")
        return True

    def save_completion(self, task_id: int, completed: bool, completed_at: Optional[datetime]) -> TaskRecord:
        with self._mutex:
            stored = self._tasks.get(task_id)
            if stored is None:
                raise TaskNotFoundError(f"Task {task_id} not found", task_id)
            updated = stored.model_copy(update={
                "completed": completed,
                "completed_at": completed_at,
                "updated_at": datetime.now(timezone.utc),
            })
            self._tasks[task_id] = updated
            return updated.model_copy()

    def add_template(self, template: TemplateCreate, created_at: Optional[datetime] = None) -> TaskRecord:
        created_at = created_at or datetime.now(timezone.utc)
        validate_template(template, created_at.date())
        with self._mutex:
            record = TaskRecord(
                id=self._allocate_id(),
                user_id=template.user_id,
                title=template.title,
                description=template.description,
                category=template.category,
                priority=template.priority,
                created_at=created_at,
                due_date=template.next_due_date,
                is_recurring=True,
                recurrence_pattern=template.recurrence.pattern.value,
                recurrence_interval=template.recurrence.interval,
                recurrence_end_date=template.recurrence.end_date,
                next_due_date=template.next_due_date,
            )
            self._tasks[record.id] = record
            return record.model_copy()
