"""
Request schemas for the pipeline trigger API.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

VIDEO_ID_REGEX = r"^[A-Za-z0-9][A-Za-z0-9_-]*$"
SEGMENT_ID_REGEX = r"^segment_\d+$"
TOPIC_ID_REGEX = r"^[A-Za-z0-9_-]+$"

VisualModeInput = Literal["slide", "template", "slide_over_template", "slide_over_topic"]


class StageTriggerRequest(BaseModel):
    """Base request for a job-level stage (concat, post-processing, upload)."""

    video_id: str = Field(..., pattern=VIDEO_ID_REGEX, description="Job identifier")
    callback_url: Optional[str] = Field(
        default=None,
        description="Optional URL to POST a stage.completed / stage.failed webhook to",
    )


class SegmentTriggerRequest(StageTriggerRequest):
    """Request body for POST /pipeline/segments."""

    segment_id: str = Field(..., pattern=SEGMENT_ID_REGEX, description="Segment identifier (segment_<n>)")
    speaker: Optional[str] = Field(
        default=None,
        description="Speaker name; selects the looping template clip",
    )
    topic_id: Optional[str] = Field(
        default=None,
        pattern=TOPIC_ID_REGEX,
        description="Topic slide to use as the background (slide_over_topic)",
    )
    include_slide: bool = Field(
        default=True,
        description="Overlay the segment slide on the speaker template",
    )
    mode: Optional[VisualModeInput] = Field(
        default=None,
        description="Explicit visual mode; derived from speaker/topic_id when omitted",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "video_id": "vid_20240101_001",
                "segment_id": "segment_3",
                "speaker": "Mia",
                "include_slide": True,
                "callback_url": None,
            }
        }


class DurationTriggerRequest(StageTriggerRequest):
    """Request body for POST /pipeline/segments/duration."""

    segment_id: str = Field(..., pattern=SEGMENT_ID_REGEX, description="Segment identifier (segment_<n>)")


class ConcatTriggerRequest(StageTriggerRequest):
    """Request body for POST /pipeline/concat."""

    policy: Optional[Literal["strict", "lenient"]] = Field(
        default=None,
        description="Handling of segments that never become stable (defaults to config)",
    )


class BackgroundTriggerRequest(StageTriggerRequest):
    """Request body for POST /pipeline/background."""

    template_key: Optional[str] = Field(
        default=None,
        description="Background clip storage key; picked at random when omitted",
    )


class BgmTriggerRequest(StageTriggerRequest):
    """Request body for POST /pipeline/bgm."""

    template_key: Optional[str] = Field(
        default=None,
        description="Music storage key; picked at random when omitted",
    )
    fade_seconds: Optional[float] = Field(
        default=None,
        ge=0,
        le=60,
        description="Length of the fade-out at the end of the video",
    )


class EndingTriggerRequest(StageTriggerRequest):
    """Request body for POST /pipeline/ending."""

    crossfade: bool = Field(
        default=False,
        description="Crossfade into the ending clip (re-encode) instead of a hard cut",
    )
