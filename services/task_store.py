"""Abstract persistence collaborator for the recurring task engine."""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional

from schemas import InstanceCreate, TaskRecord, TemplateCreate


class TaskStore(ABC):
    @abstractmethod
    def find_due_templates(self, today: date) -> List[TaskRecord]:
        """Active templates with next_due_date <= today and within their end date."""
        pass

    @abstractmethod
    def insert_instance_and_advance_template(self, instance: InstanceCreate, template: TaskRecord) -> TaskRecord:
        """Insert `instance` and persist the advanced `template` as one transaction.

        `template` carries the new next_due_date and is_recurring values. The
        stored template must still be active with next_due_date equal to
        `instance.due_date`; otherwise nothing is written.

        Returns the stored instance. Raises TemplateDeletedError when the
        template row is gone and PersistenceFailure for any other failure.
        """
        pass

    @abstractmethod
    def find_template(self, template_id: int) -> Optional[TaskRecord]:
        """Template with this id, or None when missing or not a template."""
        pass

    @abstractmethod
    def find_task(self, task_id: int) -> Optional[TaskRecord]:
        pass

    @abstractmethod
    def find_instances(self, template_id: int) -> List[TaskRecord]:
        """Instances generated from `template_id`, ordered by occurrence date."""
        pass

    @abstractmethod
    def delete_template(self, template_id: int, cascade_instances: bool = False) -> bool:
        """Delete a template. Instances are orphaned unless `cascade_instances`."""
        pass

    @abstractmethod
    def save_completion(self, task_id: int, completed: bool, completed_at: Optional[datetime]) -> TaskRecord:
        pass

    @abstractmethod
    def add_template(self, template: TemplateCreate, created_at: Optional[datetime] = None) -> TaskRecord:
        """Validate and store a new active template. `created_at` defaults to now."""
        pass
