"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from podium import __version__
from podium.api import admin, betting, seasons
from podium.config import settings
from podium.models.database import init_db
from podium.scheduler.activity_log import log_system

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    logger.info("Starting Podium...")

    # Ensure data directory exists
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)

    await init_db()
    logger.info(f"Database initialized at {settings.db_path}")

    if not settings.disable_background:
        from podium.odds.worker import odds_worker
        from podium.scheduler.manager import scheduler_manager

        odds_worker.start()
        await scheduler_manager.start()
        jobs = scheduler_manager.setup_betting_jobs()
        logger.info(f"Scheduler started with {len(jobs)} jobs")

    log_system("Podium started", status="success")

    yield

    logger.info("Shutting down Podium...")
    log_system("Podium shutting down")
    if not settings.disable_background:
        from podium.odds.worker import odds_worker
        from podium.scheduler.manager import scheduler_manager

        await scheduler_manager.stop()
        await odds_worker.stop()


# Create FastAPI app
app = FastAPI(
    title="Podium",
    description="Race ratings, weekly podium odds and bet settlement",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(betting.router, prefix="/betting", tags=["betting"])
app.include_router(seasons.router, prefix="/seasons", tags=["seasons"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    from podium.scheduler.manager import scheduler_manager

    return {
        "status": "healthy",
        "version": __version__,
        "scheduler": scheduler_manager.get_status(),
    }
