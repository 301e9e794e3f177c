import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from database import create_tables
from logging_config import configure_logging
from routes.jobs import router as jobs_router
from routes.tasks import router as tasks_router

configure_logging()
logger = logging.getLogger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    logger.info("Recurring task engine started")
    yield
    logger.info("Recurring task engine stopped")


app = FastAPI(title="Recurring Task Engine", version="1.0.0", lifespan=lifespan)


@app.get("/health")
async def health_check():
    """Health check endpoint for Kubernetes probes."""
    return {"status": "ok", "service": "recurring-task-engine"}


app.include_router(jobs_router)
app.include_router(tasks_router, prefix="/api")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
