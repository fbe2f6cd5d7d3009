"""FastAPI application entry point for Mergebox."""

import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from mergebox import __version__
from mergebox.api import events_router, router as api_router, validation_router
from mergebox.api.validation import detect_ffmpeg
from mergebox.config import settings
from mergebox.core.logging import setup_logging
from mergebox.services.job_manager import job_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    setup_logging()
    logger.info("Starting Mergebox...")

    ffmpeg_result = detect_ffmpeg()
    if ffmpeg_result.found:
        logger.info(f"FFmpeg validated: {ffmpeg_result.path} ({ffmpeg_result.version})")
    else:
        logger.warning(f"FFmpeg not found: {ffmpeg_result.error}")
        logger.warning("Install FFmpeg or set FFMPEG_PATH; jobs will fail to start until then")

    logger.info(f"qBittorrent at {job_manager.client.base_url}")
    await job_manager.start()

    yield

    # Shutdown
    logger.info("Shutting down Mergebox...")
    await job_manager.stop()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Mergebox API",
    description="Merge multi-part videos and remux external audio for qBittorrent downloads",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],  # Vite dev server
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(events_router)
app.include_router(validation_router, prefix="/api", tags=["validation"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    try:
        uvicorn.run(app, host=settings.host, port=settings.port, reload=False)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
