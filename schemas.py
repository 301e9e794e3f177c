from pydantic import BaseModel, Field
from typing import List, Optional, Union
from datetime import date, datetime

from enums import GenerationErrorKind, RecurrenceEnum, TemplateStateEnum


class TaskBase(BaseModel):
    """Fields copied from a template into every generated instance."""
    title: str
    description: Optional[str] = None
    category: str = "Other"
    priority: int = 1


class RecurrenceDescriptor(BaseModel):
    pattern: RecurrenceEnum
    interval: int = 1
    end_date: Optional[date] = None


class TemplateCreate(TaskBase):
    user_id: Optional[int] = None
    recurrence: RecurrenceDescriptor
    next_due_date: date


class InstanceCreate(TaskBase):
    user_id: Optional[int] = None
    due_date: date
    original_task_id: int


class TaskRecord(TaskBase):
    """Snapshot of a task row as handed between the stores and the engine.

    `recurrence_pattern` stays a plain string so that a row with a corrupt
    definition can still be loaded and reported instead of failing the scan.
    """
    id: int
    user_id: Optional[int] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    due_date: Optional[date] = None
    is_recurring: bool = False
    recurrence_pattern: str = RecurrenceEnum.NONE.value
    recurrence_interval: int = 1
    recurrence_end_date: Optional[date] = None
    next_due_date: Optional[date] = None
    original_task_id: Optional[int] = None

    class Config:
        from_attributes = True

    @property
    def is_instance(self) -> bool:
        return self.original_task_id is not None

    @property
    def is_template(self) -> bool:
        return (
            self.original_task_id is None
            and (self.recurrence_pattern or RecurrenceEnum.NONE.value) != RecurrenceEnum.NONE.value
        )

    @property
    def state(self) -> Optional[TemplateStateEnum]:
        """Lifecycle state for templates, None for instances and plain tasks."""
        if not self.is_template:
            return None
        return TemplateStateEnum.ACTIVE if self.is_recurring else TemplateStateEnum.ENDED


class GenerationError(BaseModel):
    template_id: int
    kind: GenerationErrorKind
    message: str


class GenerationPassResult(BaseModel):
    generated_count: int = 0
    per_template_errors: List[GenerationError] = Field(default_factory=list)
    templates_processed: int = 0
    generated_task_ids: List[int] = Field(default_factory=list)
    budget_exhausted: bool = False
    lock_lost: bool = False
    reference_date: Optional[date] = None


class GenerationRequest(BaseModel):
    now: Optional[Union[datetime, date]] = None


class CompleteInstanceRequest(BaseModel):
    completed_at: Optional[datetime] = None


class ChainResponse(BaseModel):
    instance_id: int
    template: Optional[TaskRecord] = None


class OccurrencesResponse(BaseModel):
    template: TaskRecord
    instances: List[TaskRecord]
    completed_dates: List[date]
    streak: int
    upcoming: List[date]
