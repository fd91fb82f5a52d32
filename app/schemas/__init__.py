"""
Pydantic schemas for request/response models.
"""

from app.schemas.requests import (
    BackgroundTriggerRequest,
    BgmTriggerRequest,
    ConcatTriggerRequest,
    DurationTriggerRequest,
    EndingTriggerRequest,
    SegmentTriggerRequest,
    StageTriggerRequest,
)
from app.schemas.responses import (
    HealthResponse,
    JobStatusResponse,
    PcmToMp3Response,
    ReadinessResponse,
    StageAcceptedResponse,
    StageStatusResponse,
)

__all__ = [
    "StageTriggerRequest",
    "SegmentTriggerRequest",
    "DurationTriggerRequest",
    "ConcatTriggerRequest",
    "BackgroundTriggerRequest",
    "BgmTriggerRequest",
    "EndingTriggerRequest",
    "StageAcceptedResponse",
    "StageStatusResponse",
    "JobStatusResponse",
    "PcmToMp3Response",
    "HealthResponse",
    "ReadinessResponse",
]
