"""
Chunked Concatenator - stitches a job's segments into the final artifact.

Segments are joined by stream copy in bounded batches (chunks) and the chunk
outputs are then joined the same way. Bounding the batch size keeps the
concat list and ffmpeg's open-file count small for long videos.
"""

import logging
import os
import asyncio
from typing import Optional, Sequence, TypeVar

from app.config import SegmentValidationPolicy, get_settings
from app.errors import ConcatFailed, ExternalToolFailed, FileNotReady, NoSegments
from app.services.ffmpeg import (
    FFmpegRunner,
    build_concat_list,
    build_stream_copy_concat,
    run_with_retry,
)
from app.services.readiness import ensure_ready, wait_for_accessible
from app.services.scratch import ScratchSpace

logger = logging.getLogger(__name__)

T = TypeVar("T")


def partition_chunks(items: Sequence[T], size: int) -> list[list[T]]:
    """Split an ordered sequence into consecutive batches of at most ``size``."""
    if size < 1:
        raise ValueError("Chunk size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class ChunkedConcatenator:
    """
    Service for merging ordered segment files into one video.

    Features:
    - Numeric segment ordering (segment_2 before segment_10)
    - Strict or lenient handling of segments that never become stable
    - Bounded chunk size with per-invocation retries
    - Cleanup of segments and intermediates after success
    """

    def __init__(
        self,
        scratch: Optional[ScratchSpace] = None,
        runner: Optional[FFmpegRunner] = None,
        chunk_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        settle_seconds: Optional[float] = None,
        quiet_seconds: Optional[float] = None,
        ready_max_attempts: Optional[int] = None,
        ready_poll_interval: Optional[float] = None,
        policy: Optional[SegmentValidationPolicy] = None,
    ):
        settings = get_settings()
        self.scratch = scratch or ScratchSpace()
        self.runner = runner or FFmpegRunner()
        self.chunk_size = chunk_size or settings.concat_chunk_size
        self.max_attempts = max_attempts or settings.ffmpeg_max_attempts
        self.retry_delay = (
            retry_delay_seconds if retry_delay_seconds is not None
            else settings.ffmpeg_retry_delay_seconds
        )
        self.settle_seconds = (
            settle_seconds if settle_seconds is not None else settings.chunk_settle_seconds
        )
        self.quiet_seconds = (
            quiet_seconds if quiet_seconds is not None else settings.ready_quiet_seconds
        )
        self.ready_max_attempts = ready_max_attempts or settings.ready_max_attempts
        self.ready_poll_interval = (
            ready_poll_interval if ready_poll_interval is not None
            else settings.ready_poll_interval_seconds
        )
        self.policy = policy or settings.segment_validation_policy

    async def concat(
        self,
        video_id: str,
        policy: Optional[SegmentValidationPolicy] = None,
    ) -> str:
        """
        Concatenate every segment of a job into its final artifact.

        Returns:
            Path of the final artifact

        Raises:
            NoSegments: No segment files exist (nothing is written)
            FileNotReady: A segment or chunk never became stable (strict policy)
            ConcatFailed: An ffmpeg invocation exhausted its retries
        """
        policy = policy or self.policy
        segments = self.scratch.list_segments(video_id)
        if not segments:
            raise NoSegments(video_id)

        logger.info(f"[concat] Found {len(segments)} segment files for {video_id}")

        segments = await self._validate_segments(segments, policy)
        if not segments:
            raise NoSegments(video_id)

        chunks = partition_chunks(segments, self.chunk_size)
        chunk_outputs: list[str] = []

        try:
            for index, chunk in enumerate(chunks):
                logger.info(f"[concat] Chunk {index + 1}/{len(chunks)} ({len(chunk)} segments)")
                chunk_outputs.append(await self._concat_chunk(video_id, index, chunk))

            final_path = await self._concat_final(video_id, chunk_outputs)
        finally:
            self.scratch.remove_quietly(
                *(self.scratch.chunk_path(video_id, i) for i in range(len(chunks))),
                *(self.scratch.chunk_list_path(video_id, i) for i in range(len(chunks))),
                self.scratch.final_list_path(video_id),
            )

        self.scratch.remove_quietly(*segments)
        size_mb = os.path.getsize(final_path) / 1024 / 1024
        logger.info(
            f"[concat] Final video ready: {final_path} ({size_mb:.1f} MB, "
            f"{len(segments)} segments, {len(chunks)} chunks)"
        )
        return final_path

    async def _validate_segments(
        self,
        segments: list[str],
        policy: SegmentValidationPolicy,
    ) -> list[str]:
        """Apply the readiness policy; order is preserved."""
        valid: list[str] = []
        for path in segments:
            try:
                await self._ensure_ready(path)
            except FileNotReady as e:
                if policy == "strict":
                    raise
                logger.warning(f"[concat] Skipping segment that is not ready: {e}")
                continue
            valid.append(path)
        return valid

    async def _concat_chunk(self, video_id: str, index: int, chunk: list[str]) -> str:
        list_path = self.scratch.chunk_list_path(video_id, index)
        output_path = self.scratch.chunk_path(video_id, index)

        await self._write_list(list_path, chunk)
        cmd = build_stream_copy_concat(list_path, output_path)

        try:
            await run_with_retry(
                self.runner,
                cmd,
                max_attempts=self.max_attempts,
                retry_delay_seconds=self.retry_delay,
                expected_output=output_path,
            )
        except ExternalToolFailed as e:
            raise ConcatFailed("chunk", index, str(e)[:300]) from e

        await wait_for_accessible(output_path, retries=10, interval=0.2)
        self.scratch.remove_quietly(list_path)

        # Let the output become visible to every reader before the next stage
        if self.settle_seconds > 0:
            await asyncio.sleep(self.settle_seconds)

        await self._ensure_ready(output_path)
        return output_path

    async def _concat_final(self, video_id: str, chunk_outputs: list[str]) -> str:
        list_path = self.scratch.final_list_path(video_id)
        final_path = self.scratch.final_path(video_id)
        temp_path = ScratchSpace.temp_path(final_path, "concat")

        await self._write_list(list_path, chunk_outputs)
        cmd = build_stream_copy_concat(list_path, temp_path)

        try:
            await run_with_retry(
                self.runner,
                cmd,
                max_attempts=self.max_attempts,
                retry_delay_seconds=self.retry_delay,
                expected_output=temp_path,
            )
            ScratchSpace.replace_atomically(temp_path, final_path)
        except ExternalToolFailed as e:
            raise ConcatFailed("final", None, str(e)[:300]) from e
        finally:
            self.scratch.remove_quietly(temp_path)

        return final_path

    async def _write_list(self, list_path: str, paths: list[str]) -> None:
        with open(list_path, "w", encoding="utf-8") as f:
            f.write(build_concat_list(paths))
        await wait_for_accessible(list_path, retries=10, interval=0.1)

    async def _ensure_ready(self, path: str) -> None:
        await ensure_ready(
            path,
            max_attempts=self.ready_max_attempts,
            poll_interval=self.ready_poll_interval,
            quiet_seconds=self.quiet_seconds,
        )
