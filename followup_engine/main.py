"""
Follow-up Engine - FastAPI Application
Main entry point with all routes and background workers configured.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from followup_engine.config import settings
from followup_engine.core.context import build_context
from followup_engine.core.exceptions import FollowupEngineError, engine_error_handler
from followup_engine.database import async_session, init_db
from followup_engine.schemas.common import HealthResponse
from followup_engine.workers.periodic import WorkerRunner
from followup_engine.workers.reminders import ReminderProcessor, build_workers

# Import all API routers
from followup_engine.api import automation, followups, sequences, tasks, workers

VERSION = "1.0.0"

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    await init_db()
    context = build_context(settings)
    async with async_session() as session:
        await context.scheduler.rebuild_from(session)

    runner = WorkerRunner(build_workers(ReminderProcessor(context, async_session)))
    app.state.context = context
    app.state.workers = runner
    if settings.WORKERS_ENABLED:
        runner.start()
    else:
        logger.info("Background workers disabled")

    yield

    # Shutdown
    await runner.stop()
    dispatcher = context.notifications.dispatcher
    if hasattr(dispatcher, "aclose"):
        await dispatcher.aclose()


app = FastAPI(
    title="Follow-up Engine API",
    description="Follow-up scheduling, task prioritization and call-outcome automation for sales teams",
    version=VERSION,
    lifespan=lifespan
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(FollowupEngineError, engine_error_handler)

# Include all routers
app.include_router(tasks.router)
app.include_router(followups.router)
app.include_router(automation.router)
app.include_router(sequences.router)
app.include_router(workers.router)


@app.get("/")
async def root():
    return {
        "message": "Follow-up Engine API is running",
        "version": VERSION,
        "docs": "/docs"
    }


@app.get("/health", response_model=HealthResponse)
async def health():
    """Detailed health check."""
    runner = getattr(app.state, "workers", None)
    context = getattr(app.state, "context", None)
    return {
        "status": "healthy",
        "version": VERSION,
        "workers_running": bool(runner and runner.started),
        "indexed_tasks": len(context.scheduler) if context else 0,
    }
