"""
Completion Signal - "done" marker objects polled by the external orchestrator.
"""

import logging
from typing import Optional

from app.services.storage_client import StorageClient, get_storage_client

logger = logging.getLogger(__name__)

MARKER_BODY = b"done"


def marker_key(video_id: str, unit: str) -> str:
    """Storage key of the marker for one unit of work (segment ID or stage name)."""
    return f"{video_id}/{unit}/done.txt"


class CompletionSignal:
    """Writes completion markers. Only called after a unit of work succeeded."""

    def __init__(self, storage: Optional[StorageClient] = None):
        self.storage = storage or get_storage_client()

    async def mark_done(self, video_id: str, unit: str) -> str:
        key = marker_key(video_id, unit)
        await self.storage.put_bytes(key, MARKER_BODY, content_type="text/plain")
        logger.info(f"Completion marker written: {key}")
        return key
