import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

# Import all models to ensure they're registered with SQLAlchemy Base
# This is needed for relationships between models in different files
from . import (
    models,  # noqa: F401
    models_google_calendar,  # noqa: F401
)
from .config import SCHEDULER_ENABLED, AutomationSettings, get_automation_settings
from .database import Base, SessionLocal, engine
from .routes.automation import router as automation_router
from .services.clock import Clock
from .services.google_calendar_service import CalendarClient, GoogleCalendarClient
from .services.lifecycle_engine import OrderLifecycleEngine
from .services.lifecycle_scheduler import LifecycleScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)


def build_lifecycle_scheduler(
    settings: AutomationSettings,
    session_factory: Callable[[], Session] = SessionLocal,
    calendar_client: Optional[CalendarClient] = None,
    clock: Optional[Clock] = None,
) -> LifecycleScheduler:
    """Wire clock, calendar client, engine and scheduler from one settings object"""
    clock = clock or Clock(settings.timezone)
    calendar_client = calendar_client or GoogleCalendarClient(timeout=settings.calendar_http_timeout)
    lifecycle_engine = OrderLifecycleEngine(session_factory, calendar_client, clock)
    return LifecycleScheduler(lifecycle_engine, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    scheduler = build_lifecycle_scheduler(get_automation_settings())
    app.state.lifecycle_scheduler = scheduler

    if SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("ℹ️ Lifecycle scheduler disabled (SCHEDULER_ENABLED=false); manual trigger only")

    yield

    logger.info("Application shutting down...")
    await scheduler.shutdown()


app = FastAPI(title="ReviewPilot API", version="1.0.0", lifespan=lifespan)


# CORS Configuration
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(automation_router)


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/scheduler")
async def scheduler_health_check():
    """Check the in-process lifecycle scheduler for monitoring"""
    scheduler = getattr(app.state, "lifecycle_scheduler", None)
    if scheduler is None:
        return {"status": "unhealthy", "scheduler": {"initialized": False}}

    return {
        "status": "healthy",
        "scheduler": {
            "initialized": True,
            "enabled": SCHEDULER_ENABLED,
            "apscheduler_running": scheduler.scheduler.running,
            "pass_running": scheduler.is_running,
            "timezone": scheduler.settings.timezone,
        },
    }
