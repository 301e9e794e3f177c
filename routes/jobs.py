"""Recurring Generation Job Endpoint.

A periodic trigger (cron, Kubernetes CronJob, Dapr Jobs callback, ...) calls
this endpoint to run one generation pass.

- POST /api/jobs/recurring-generation
- 409 when another pass is still running; the next tick retries
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from config.settings import settings
from database import SessionLocal, get_db
from schemas import GenerationPassResult, GenerationRequest
from services.generation_lock import DatabaseGenerationLock, GenerationLock, ProcessGenerationLock
from services.recurring_task.scheduler import GenerationScheduler
from services.sql_task_store import SqlAlchemyTaskStore
from utils.error_handler import ConcurrentGenerationInProgress, PersistenceFailure

logger = logging.getLogger("app")

router = APIRouter()

# Shared by every request so overlapping passes in this process see each other
_process_lock = ProcessGenerationLock()


def get_generation_lock() -> GenerationLock:
    if settings.GENERATION_LOCK_BACKEND == "database":
        return DatabaseGenerationLock(
            SessionLocal,
            name=settings.GENERATION_LOCK_NAME,
            ttl_seconds=settings.GENERATION_LOCK_TTL_SECONDS,
        )
    return _process_lock


def get_generation_scheduler(
    db: Session = Depends(get_db),
    lock: GenerationLock = Depends(get_generation_lock),
) -> GenerationScheduler:
    return GenerationScheduler(
        SqlAlchemyTaskStore(db),
        lock=lock,
        max_catch_up_per_template=settings.MAX_CATCH_UP_PER_TEMPLATE,
        pass_time_budget=settings.pass_time_budget(),
        reference_timezone=settings.REFERENCE_TIMEZONE,
    )


@router.post("/api/jobs/recurring-generation", response_model=GenerationPassResult)
def run_recurring_generation(
    request: Optional[GenerationRequest] = None,
    scheduler: GenerationScheduler = Depends(get_generation_scheduler),
):
    """Run one recurring-task generation pass.

    Args:
        request: Optional body with the pass timestamp (`now`); defaults to the current time

    Returns:
        Generated count and per-template errors of the pass
    """
    now = request.now if request and request.now else datetime.now(timezone.utc)
    logger.info(f"Received recurring generation trigger for {now}")

    try:
        result = scheduler.run_generation_pass(now)
    except ConcurrentGenerationInProgress as e:
        logger.warning(f"Recurring generation skipped: {e.message}")
        raise HTTPException(status_code=409, detail=e.message)
    except PersistenceFailure as e:
        logger.error(f"Recurring generation could not start: {e.message}")
        raise HTTPException(status_code=503, detail=e.message)

    if result.per_template_errors:
        failed = sorted({error.template_id for error in result.per_template_errors})
        logger.warning(f"Recurring generation finished with failing templates: {failed}")
    return result


@router.get("/api/jobs/health")
async def jobs_health_check():
    """Health check endpoint for the generation job trigger."""
    return {
        "status": "ok",
        "service": "recurring-generation",
        "lock_backend": settings.GENERATION_LOCK_BACKEND,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
