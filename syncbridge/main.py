"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from syncbridge import __version__
from syncbridge.api import adapters, dashboard, sync
from syncbridge.config import settings
from syncbridge.models.base import init_db
from syncbridge.scheduler import scheduler
from syncbridge.security import install_basic_auth

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting SyncBridge")
    init_db()
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping SyncBridge")
    scheduler.stop()


app = FastAPI(
    title="SyncBridge",
    description="Bidirectional work item synchronization between external systems",
    version=__version__,
    lifespan=lifespan,
)

# Optional built-in auth (recommended if exposed beyond localhost/private networks)
install_basic_auth(app, settings)

# Include API routers
app.include_router(sync.router)
app.include_router(adapters.router)
app.include_router(dashboard.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "SyncBridge"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "syncbridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
