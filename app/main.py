"""
FastAPI application entry point for the narration assembler.

The assembler turns independently produced narration audio, slide images and
template clips into one uploaded video:
1. Per-segment synthesis (audio + visuals -> segment video)
2. Chunked concatenation of all segments
3. Optional background overlay, BGM mixing and ending append
4. Size-constrained upload of the final video
"""

import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.routers import audio, health, pipeline
from app.services.pipeline import PipelineServices
from app.services.scratch import ScratchSpace
from app.services.stage_runner import StageRunner

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Prepares the scratch directory and wires the stage runner.
    """
    settings = get_settings()
    logger.info(f"Starting {settings.app_name}...")

    scratch = ScratchSpace(settings.scratch_directory)
    os.makedirs(scratch.root, exist_ok=True)
    scratch.ensure_template_dir()
    logger.info(f"Scratch directory: {scratch.root}")
    logger.info(f"Segment validation policy: {settings.segment_validation_policy}")

    app.state.stage_runner = StageRunner(max_concurrent=settings.max_concurrent_stages)
    app.state.pipeline_services = PipelineServices.create(scratch=scratch)

    _verify_external_tools()

    logger.info("Assembler ready to accept requests.")

    yield

    # Scratch is kept on shutdown; in-flight jobs resume from it after a restart
    logger.info(f"Shutting down {settings.app_name}...")
    app.state.stage_runner = None
    app.state.pipeline_services = None
    logger.info("Shutdown complete")


def _verify_external_tools():
    """Verify that required external tools are available."""
    tools = {
        "ffmpeg": "FFmpeg for segment rendering and concatenation",
        "ffprobe": "FFprobe for duration probing",
    }

    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - stages will fail")


# Create FastAPI application
app = FastAPI(
    title="Narration Assembler",
    description="""
Media assembly service for narrated slide videos.

## Usage

1. Synthesize segments: `POST /pipeline/segments` (one call per segment)
2. Wait for `{video_id}/{segment_id}/done.txt` markers in storage
3. Concatenate: `POST /pipeline/concat`
4. Optionally `POST /pipeline/background`, `/pipeline/bgm`, `/pipeline/ending`
5. Upload: `POST /pipeline/upload`

Every trigger returns 202 and runs in the background. Completion is
signalled by `{video_id}/{stage}/done.txt` and the optional `callback_url`.
    """,
    version=health.VERSION,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(pipeline.router)
app.include_router(audio.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    settings = get_settings()
    return {
        "service": settings.app_name,
        "version": health.VERSION,
        "status": "running",
        "features": {
            "segments": "slide / template / slide_over_template / slide_over_topic",
            "concat": f"chunked stream copy ({settings.concat_chunk_size} segments per chunk)",
            "post_processing": "background overlay, BGM mixing, ending append",
            "upload": f"size-constrained ({settings.upload_size_ceiling_bytes // (1024 * 1024)} MB)",
        },
        "docs": "/docs",
    }
