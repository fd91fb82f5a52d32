"""
Size-Constrained Uploader - publishes the final video under the storage size ceiling.
"""

import logging
import os
from typing import Optional

from app.config import CompressionStep, get_settings
from app.errors import ArtifactTooLarge
from app.services.ffmpeg import FFmpegCommand, FFmpegRunner, run_with_retry
from app.services.readiness import wait_for_accessible
from app.services.scratch import ScratchSpace
from app.services.storage_client import StorageClient, final_video_key, get_storage_client

logger = logging.getLogger(__name__)


class SizeConstrainedUploader:
    """
    Uploads a job's final video, re-encoding it down a fixed ladder when needed.

    Every ladder step re-encodes from the untouched final video, so quality
    loss never compounds across steps. A file already under the ceiling is
    uploaded byte-for-byte.
    """

    def __init__(
        self,
        scratch: Optional[ScratchSpace] = None,
        storage: Optional[StorageClient] = None,
        runner: Optional[FFmpegRunner] = None,
        size_ceiling_bytes: Optional[int] = None,
        ladder: Optional[list[CompressionStep]] = None,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
    ):
        self.settings = get_settings()
        self.scratch = scratch or ScratchSpace()
        self.storage = storage or get_storage_client()
        self.runner = runner or FFmpegRunner()
        self.size_ceiling = size_ceiling_bytes or self.settings.upload_size_ceiling_bytes
        self.ladder = ladder if ladder is not None else self.settings.compression_ladder
        self.max_attempts = max_attempts or self.settings.ffmpeg_max_attempts
        self.retry_delay = (
            retry_delay_seconds if retry_delay_seconds is not None
            else self.settings.ffmpeg_retry_delay_seconds
        )

    async def upload_final(self, video_id: str) -> str:
        """
        Upload the final video to ``{video_id}/{video_id}.mp4`` and purge scratch.

        Returns:
            Public URL of the uploaded video

        Raises:
            FileNotReady: The final video does not exist
            ArtifactTooLarge: Still over the ceiling after the last ladder step
            UploadFailed: Storage rejected the upload
        """
        final_path = self.scratch.final_path(video_id)
        await wait_for_accessible(final_path, retries=10, interval=0.5)

        candidate = final_path
        size = os.path.getsize(candidate)
        logger.info(
            f"[upload] {video_id}: final video is {size / 1024 / 1024:.1f} MB "
            f"(limit {self.size_ceiling / 1024 / 1024:.0f} MB)"
        )

        try:
            for attempt, step in enumerate(self.ladder, start=1):
                if size <= self.size_ceiling:
                    break

                compressed = await self._compress(video_id, final_path, attempt, step)
                if candidate != final_path:
                    self.scratch.remove_quietly(candidate)
                candidate = compressed
                size = os.path.getsize(candidate)
                logger.info(
                    f"[upload] {video_id}: step {attempt} (crf={step.crf}, "
                    f"audio={step.audio_bitrate_kbps}k) -> {size / 1024 / 1024:.1f} MB"
                )

            if size > self.size_ceiling:
                raise ArtifactTooLarge(video_id, size)

            result = await self.storage.upload_file(candidate, final_video_key(video_id))
        except Exception:
            # Candidates never outlive a failed upload; the final video stays
            if candidate != final_path:
                self.scratch.remove_quietly(candidate)
            raise

        self.scratch.purge_job(video_id)

        logger.info(f"[upload] {video_id}: uploaded to {result.key}")
        return result.url

    def build_compress_command(
        self,
        source_path: str,
        output_path: str,
        step: CompressionStep,
    ) -> list[str]:
        cmd = FFmpegCommand().input(source_path)
        if step.max_height:
            cmd.output_options("-vf", f"scale=-2:'min({step.max_height},ih)'")
        return (
            cmd.output_options(
                "-c:v", "libx264",
                "-preset", self.settings.ffmpeg_preset,
                "-crf", str(step.crf),
                "-pix_fmt", "yuv420p",
                "-c:a", "aac",
                "-b:a", f"{step.audio_bitrate_kbps}k",
                "-movflags", "+faststart",
            )
            .output(output_path, container="mp4")
            .build()
        )

    async def _compress(
        self,
        video_id: str,
        final_path: str,
        attempt: int,
        step: CompressionStep,
    ) -> str:
        candidate = self.scratch.candidate_path(video_id, attempt)
        temp_path = ScratchSpace.temp_path(candidate, "encode")
        cmd = self.build_compress_command(final_path, temp_path, step)

        try:
            await run_with_retry(
                self.runner,
                cmd,
                max_attempts=self.max_attempts,
                retry_delay_seconds=self.retry_delay,
                expected_output=temp_path,
            )
            ScratchSpace.replace_atomically(temp_path, candidate)
        finally:
            self.scratch.remove_quietly(temp_path)

        return candidate
