from contextlib import asynccontextmanager
from fastapi import FastAPI
import logging

from app.database import init_db
from app.routers import config_router, api_router
from app.scheduler import start_scheduler, stop_scheduler
from app.config import settings


def setup_logging():
    """Configure the root logger from settings."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        force=True
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    await init_db()
    start_scheduler()
    yield
    # Shutdown
    stop_scheduler()


app = FastAPI(title="AW Metadata Sync", lifespan=lifespan)

# Include routers
app.include_router(config_router, prefix="/config", tags=["config"])
app.include_router(api_router, prefix="/api", tags=["api"])
