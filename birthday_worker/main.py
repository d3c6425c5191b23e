# birthday_worker/main.py - FastAPI host for the scheduler with a health endpoint
from fastapi import FastAPI
from contextlib import asynccontextmanager
from typing import Optional
from birthday_worker.config import Settings, settings as default_settings
from birthday_worker.database import Database
from birthday_worker.scheduler import BirthdayScheduler
from birthday_worker.worker import build_scheduler, close_gateways, configure_logging
import logging

logger = logging.getLogger(__name__)

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    scheduler: Optional[BirthdayScheduler] = None
) -> FastAPI:
    settings = settings or default_settings
    database = database or Database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        # Startup
        logger.info("Starting birthday scheduler service...")
        try:
            await database.connect()
            logger.info("Database connection pool initialized")
        except Exception as e:
            if settings.environment == "development":
                logger.warning(f"Database connection failed (development mode): {e}")
            else:
                logger.error(f"Failed to initialize database: {e}")
                raise

        app.state.scheduler = scheduler or build_scheduler(database, settings)
        app.state.scheduler.start()

        yield

        # Shutdown
        logger.info("Shutting down birthday scheduler service...")
        await app.state.scheduler.stop()
        await close_gateways(app.state.scheduler)
        try:
            await database.close()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning(f"Error closing database connections: {e}")

    app = FastAPI(
        title="Birthday Scheduler",
        description="Multi-tenant birthday message scheduler",
        version="1.0.0",
        lifespan=lifespan
    )

    @app.get("/health")
    async def health_check():
        """Database reachability and scheduler state"""
        db_healthy = await database.ping()
        running_scheduler: BirthdayScheduler = app.state.scheduler
        last_tick = running_scheduler.last_tick_at

        return {
            "status": "healthy" if db_healthy and running_scheduler.is_running else "degraded",
            "environment": settings.environment,
            "database_healthy": db_healthy,
            "scheduler": {
                "state": running_scheduler.state.value,
                "running": running_scheduler.is_running,
                "last_tick_at": last_tick.isoformat() if last_tick else None,
                "ticks_run": running_scheduler.ticks_run
            }
        }

    return app

configure_logging(default_settings)
app = create_app()
