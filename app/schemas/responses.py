"""
Response schemas for the pipeline trigger API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class StageAcceptedResponse(BaseModel):
    """Acknowledgement returned by every trigger endpoint (202)."""

    video_id: str = Field(..., description="Job identifier")
    stage: str = Field(..., description="Stage that was scheduled")
    unit: str = Field(..., description="Unit of work whose marker will be written on success")
    status: str = Field(default="accepted")
    message: str = Field(default="Stage queued for processing")


class StageStatusResponse(BaseModel):
    """In-memory status of one unit of work."""

    stage: str
    unit: str
    status: str
    error: Optional[str] = None
    output: Optional[Dict[str, Any]] = None
    updated_at: str


class JobStatusResponse(BaseModel):
    """Every stage this process has seen for a job."""

    video_id: str
    stages: List[StageStatusResponse]


class PcmToMp3Response(BaseModel):
    """Converted narration audio."""

    audio_base64: str = Field(..., description="MP3 bytes, base64-encoded")
    content_type: str = Field(default="audio/mpeg")
    size_bytes: int = Field(..., description="Size of the decoded MP3")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to accept requests")
    ffmpeg: Optional[str] = Field(default=None, description="First line of `ffmpeg -version`")
    ffprobe: Optional[str] = Field(default=None, description="First line of `ffprobe -version`")
    scratch_directory: str = Field(..., description="Scratch root used by every stage")
