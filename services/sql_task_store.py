import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from enums import RecurrenceEnum
from models import Task
from schemas import InstanceCreate, TaskRecord, TemplateCreate
from services.task_store import TaskStore
from utils.error_handler import PersistenceFailure, RecurrenceError, TaskNotFoundError, TemplateDeletedError
from utils.validators import validate_template

logger = logging.getLogger("app")


class SqlAlchemyTaskStore(TaskStore):
    """TaskStore backed by a SQLAlchemy session. Each write commits or rolls back as a whole."""

    def __init__(self, db: Session):
        self.db = db

    def _templates(self):
        return self.db.query(Task).filter(
            Task.original_task_id.is_(None),
            Task.recurrence_pattern != RecurrenceEnum.NONE.value,
        )

    def find_due_templates(self, today: date) -> List[TaskRecord]:
        rows = (
            self.db.query(Task)
            .filter(
                Task.original_task_id.is_(None),
                Task.is_recurring.is_(True),
                Task.next_due_date.isnot(None),
                Task.next_due_date <= today,
                or_(Task.recurrence_end_date.is_(None), Task.next_due_date <= Task.recurrence_end_date),
            )
            .order_by(Task.next_due_date, Task.id)
            .all()
        )
        return [TaskRecord.model_validate(row) for row in rows]

    def find_template(self, template_id: int) -> Optional[TaskRecord]:
        row = self._templates().filter(Task.id == template_id).first()
        return TaskRecord.model_validate(row) if row else None

    def find_task(self, task_id: int) -> Optional[TaskRecord]:
        row = self.db.query(Task).filter(Task.id == task_id).first()
        return TaskRecord.model_validate(row) if row else None

    def find_instances(self, template_id: int) -> List[TaskRecord]:
        rows = (
            self.db.query(Task)
            .filter(Task.original_task_id == template_id)
            .order_by(Task.due_date, Task.id)
            .all()
        )
        return [TaskRecord.model_validate(row) for row in rows]

    def insert_instance_and_advance_template(self, instance: InstanceCreate, template: TaskRecord) -> TaskRecord:
        try:
            stored = (
                self.db.query(Task)
                .filter(Task.id == template.id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if stored is None:
                raise TemplateDeletedError(f"Template {template.id} no longer exists", template.id)
            if not stored.is_recurring or stored.next_due_date != instance.due_date:
                raise PersistenceFailure(
                    f"Template {template.id} moved on to {stored.next_due_date} "
                    f"(active={stored.is_recurring}) before occurrence {instance.due_date} was written",
                    template.id,
                )

            db_instance = Task(
                **instance.model_dump(),
                is_recurring=False,
                recurrence_pattern=RecurrenceEnum.NONE.value,
                recurrence_interval=1,
            )
            self.db.add(db_instance)

            stored.next_due_date = template.next_due_date
            stored.is_recurring = template.is_recurring
            stored.updated_at = datetime.now(timezone.utc)

            self.db.commit()
            self.db.refresh(db_instance)
            return TaskRecord.model_validate(db_instance)
        except RecurrenceError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error generating occurrence {instance.due_date} for template {template.id}: {e}")
            self.db.rollback()
            raise PersistenceFailure(
                f"Could not store occurrence {instance.due_date} for template {template.id}: {e}",
                template.id,
            ) from e

    def delete_template(self, template_id: int, cascade_instances: bool = False) -> bool:
        db_template = self._templates().filter(Task.id == template_id).first()
        if not db_template:
            return False
        try:
            instances = self.db.query(Task).filter(Task.original_task_id == template_id)
            if cascade_instances:
                removed = instances.delete(synchronize_session=False)
                logger.info(f"Deleting template {template_id} with {removed} instance(s)")
            else:
                orphaned = instances.update({Task.original_task_id: None}, synchronize_session=False)
                logger.info(f"Deleting template {template_id}, orphaning {orphaned} instance(s)")
            self.db.delete(db_template)
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting template {template_id}: {e}")
            self.db.rollback()
            raise PersistenceFailure(f"Could not delete template {template_id}: {e}", template_id) from e
        return True

    def save_completion(self, task_id: int, completed: bool, completed_at: Optional[datetime]) -> TaskRecord:
        db_task = self.db.query(Task).filter(Task.id == task_id).first()
        if not db_task:
            raise TaskNotFoundError(f"Task {task_id} not found", task_id)
        try:
            db_task.completed = completed
            db_task.completed_at = completed_at
            db_task.updated_at = datetime.now(timezone.utc)
            self.db.commit()
            self.db.refresh(db_task)
        except SQLAlchemyError as e:
            logger.error(f"Error saving completion for task {task_id}: {e}")
            self.db.rollback()
            raise PersistenceFailure(f"Could not save completion for task {task_id}: {e}", task_id) from e
        return TaskRecord.model_validate(db_task)

    def add_template(self, template: TemplateCreate, created_at: Optional[datetime] = None) -> TaskRecord:
        created_at = created_at or datetime.now(timezone.utc)
        validate_template(template, created_at.date())
        try:
            db_template = Task(
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
                original_task_id=None,
            )
            self.db.add(db_template)
            self.db.commit()
            self.db.refresh(db_template)
        except SQLAlchemyError as e:
            logger.error(f"Error creating template: {e}")
            self.db.rollback()
            raise PersistenceFailure(f"Could not create template: {e}") from e
        return TaskRecord.model_validate(db_template)
