"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.staticfiles import StaticFiles

from hlspipe.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Ensure logging output if Uvicorn hijacked the root logger but didn't set level/handlers as expected
if not logging.getLogger().handlers:
    console = logging.StreamHandler()
    console.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.getLogger().addHandler(console)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("Starting media pipeline service...")

    from hlspipe.services.job_queue import job_queue
    from hlspipe.services.job_store import job_store

    settings.ensure_directories()
    job_store.remove_stale_temp_files()

    await job_queue.start_worker()
    requeued = await job_queue.recover()
    if requeued:
        logger.info(f"Re-queued {requeued} jobs from previous run")

    yield

    # Shutdown
    logger.info("Shutting down media pipeline service...")
    await job_queue.stop_worker()


# Create FastAPI app
app = FastAPI(
    title="Media Pipeline Service",
    description="Video upload service producing HLS renditions and thumbnails",
    version="1.0.0",
    lifespan=lifespan,
)

# Add GZip Middleware
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from hlspipe.routes import videos  # noqa: E402

app.include_router(videos.router, prefix="/api/videos", tags=["videos"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    from hlspipe.services.job_queue import job_queue

    queue_status = job_queue.get_queue_status()

    return {
        "status": "healthy",
        "queue_size": queue_status["queue_size"],
        "active_jobs": queue_status["active_job_ids"],
        "workers": queue_status["workers"],
    }


# Static media: thumbnails and HLS outputs
storage_root = Path(settings.STORAGE_DIR)
app.mount(
    "/thumbnails",
    StaticFiles(directory=storage_root / "thumbnails", check_dir=False),
    name="thumbnails",
)
app.mount(
    "/streams",
    StaticFiles(directory=storage_root / "outputs", check_dir=False),
    name="streams",
)


def run():
    """Run the service with uvicorn."""
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
