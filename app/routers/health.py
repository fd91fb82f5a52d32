"""
Health check endpoints for the assembler.
"""

import asyncio
import os
import shutil
import subprocess
from typing import Optional

from fastapi import APIRouter

from app.config import get_settings
from app.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()

VERSION = "1.0.0"


def tool_version(tool: str) -> Optional[str]:
    """First line of ``<tool> -version``, or None when the tool is unusable."""
    if shutil.which(tool) is None:
        return None
    try:
        result = subprocess.run([tool, "-version"], capture_output=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0 or not result.stdout:
        return None
    return result.stdout.decode(errors="replace").splitlines()[0].strip()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(status="healthy", version=VERSION)


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check():
    """
    Readiness check endpoint.

    Ready when ffmpeg and ffprobe run and the scratch root exists.
    """
    settings = get_settings()
    loop = asyncio.get_event_loop()
    ffmpeg = await loop.run_in_executor(None, tool_version, "ffmpeg")
    ffprobe = await loop.run_in_executor(None, tool_version, "ffprobe")
    scratch_ok = os.path.isdir(settings.scratch_directory)

    return ReadinessResponse(
        ready=bool(ffmpeg and ffprobe and scratch_ok),
        ffmpeg=ffmpeg,
        ffprobe=ffprobe,
        scratch_directory=settings.scratch_directory,
    )
