import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from config.settings import settings
from database import get_db
from schemas import ChainResponse, CompleteInstanceRequest, OccurrencesResponse, TaskRecord
from services.occurrence_tracker import OccurrenceTracker
from services.sql_task_store import SqlAlchemyTaskStore
from services.task_chain import TaskChain
from utils.error_handler import (
    ChainIntegrityViolation,
    InvalidOperationError,
    PersistenceFailure,
    RecurrenceError,
    TaskNotFoundError,
)
from utils.recurrence_calculator import RecurrenceCalculator, to_reference_date

logger = logging.getLogger("app")

router = APIRouter()


def get_task_store(db: Session = Depends(get_db)) -> SqlAlchemyTaskStore:
    return SqlAlchemyTaskStore(db)


def _get_task_or_404(store: SqlAlchemyTaskStore, task_id: int) -> TaskRecord:
    task = store.find_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.post("/tasks/{task_id}/complete", response_model=TaskRecord)
def complete_task(
    task_id: int,
    request: Optional[CompleteInstanceRequest] = None,
    store: SqlAlchemyTaskStore = Depends(get_task_store),
):
    """Mark a task occurrence as completed."""
    task = _get_task_or_404(store, task_id)
    when = request.completed_at if request and request.completed_at else datetime.now(timezone.utc)
    try:
        return OccurrenceTracker(store).mark_completed(task, when)
    except InvalidOperationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=e.message)


@router.post("/tasks/{task_id}/reopen", response_model=TaskRecord)
def reopen_task(task_id: int, store: SqlAlchemyTaskStore = Depends(get_task_store)):
    task = _get_task_or_404(store, task_id)
    try:
        return OccurrenceTracker(store).reopen(task)
    except InvalidOperationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=e.message)


@router.get("/tasks/{task_id}/chain", response_model=ChainResponse)
def get_task_chain(task_id: int, store: SqlAlchemyTaskStore = Depends(get_task_store)):
    """Resolve an instance back to the template that generated it."""
    _get_task_or_404(store, task_id)
    try:
        template = TaskChain(store).resolve_chain(task_id)
    except ChainIntegrityViolation as e:
        logger.error(f"Chain integrity violation: {e.message}")
        raise HTTPException(status_code=500, detail=e.message)
    return ChainResponse(instance_id=task_id, template=template)


@router.get("/tasks/{template_id}/occurrences", response_model=OccurrencesResponse)
def get_template_occurrences(
    template_id: int,
    upcoming: int = 5,
    store: SqlAlchemyTaskStore = Depends(get_task_store),
):
    """Generated instances, completion history and upcoming dates of a template."""
    template = store.find_template(template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")

    chain = TaskChain(store)
    today = to_reference_date(datetime.now(timezone.utc), settings.REFERENCE_TIMEZONE)

    upcoming_dates: List = []
    if template.is_recurring and template.next_due_date is not None:
        try:
            upcoming_dates = RecurrenceCalculator.preview_occurrences(
                template.next_due_date,
                template.recurrence_pattern,
                template.recurrence_interval,
                end_date=template.recurrence_end_date,
                count=max(0, min(upcoming, 52)),
            )
        except RecurrenceError as e:
            logger.warning(f"Cannot preview occurrences of template {template_id}: {e.message}")

    return OccurrencesResponse(
        template=template,
        instances=chain.list_instances(template_id),
        completed_dates=sorted(chain.completed_occurrence_dates(template_id)),
        streak=chain.completion_streak(template_id, today),
        upcoming=upcoming_dates,
    )


@router.delete("/tasks/{template_id}")
def delete_template(
    template_id: int,
    cascade_instances: Optional[bool] = None,
    store: SqlAlchemyTaskStore = Depends(get_task_store),
):
    """Delete a recurring template. No further instances are generated for it."""
    cascade = settings.DELETE_INSTANCES_WITH_TEMPLATE if cascade_instances is None else cascade_instances
    try:
        deleted = store.delete_template(template_id, cascade_instances=cascade)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=e.message)
    if not deleted:
        raise HTTPException(status_code=404, detail="Template not found")
    return {"success": True, "template_id": template_id, "cascade_instances": cascade}
