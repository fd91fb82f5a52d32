"""
Duration Extractor - publishes the narration length of a segment.

The orchestrator reads ``{video_id}/{segment_id}/duration.txt`` to plan slide
timing before segments are synthesized.
"""

import logging
from typing import Optional

from app.config import get_settings
from app.services.asset_fetcher import AssetFetcher
from app.services.ffmpeg import FFmpegRunner
from app.services.probe import probe_duration
from app.services.scratch import ScratchSpace, segment_index
from app.services.storage_client import StorageClient, get_storage_client, segment_asset_key

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    return f"{seconds:.2f}\n"


class DurationExtractor:
    """Downloads a segment's audio, probes it and uploads the duration file."""

    def __init__(
        self,
        scratch: Optional[ScratchSpace] = None,
        fetcher: Optional[AssetFetcher] = None,
        storage: Optional[StorageClient] = None,
        runner: Optional[FFmpegRunner] = None,
    ):
        self.settings = get_settings()
        self.scratch = scratch or ScratchSpace()
        self.fetcher = fetcher or AssetFetcher()
        self.storage = storage or get_storage_client()
        self.runner = runner or FFmpegRunner()

    async def extract(self, video_id: str, segment_id: str) -> float:
        """
        Probe the segment narration and upload its duration.

        Returns:
            Duration in seconds
        """
        segment_index(segment_id)
        self.scratch.ensure_job_dir(video_id)
        audio_path = self.scratch.asset_path(video_id, segment_id, "duration_audio.mp3")

        try:
            await self.fetcher.fetch(
                self.settings.public_url(segment_asset_key(video_id, segment_id, "audio.mp3")),
                audio_path,
                retries=self.settings.download_retries,
                backoff_seconds=self.settings.download_backoff_seconds,
            )
            duration = await probe_duration(audio_path, self.runner)
        finally:
            self.scratch.remove_quietly(audio_path)

        key = segment_asset_key(video_id, segment_id, "duration.txt")
        await self.storage.put_bytes(key, format_duration(duration).encode("utf-8"))
        logger.info(f"[duration] {video_id}/{segment_id}: {duration:.2f}s -> {key}")
        return duration
