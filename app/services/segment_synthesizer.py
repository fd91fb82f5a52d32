"""
Segment Synthesizer - turns one narration track plus its visuals into a video segment.

Every segment of a job is encoded with the same profile (codec, frame rate,
resolution, audio layout) so the concatenator can join them by stream copy.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.config import get_settings
from app.errors import ExternalToolFailed, ProbeFailed
from app.services.asset_fetcher import AssetFetcher
from app.services.ffmpeg import FFmpegCommand, FFmpegRunner
from app.services.probe import probe_duration
from app.services.scratch import ScratchSpace, segment_index
from app.services.storage_client import segment_asset_key, topic_slide_key

logger = logging.getLogger(__name__)


class VisualMode(str, Enum):
    """How the visual track of a segment is composed."""

    SLIDE = "slide"                              # static slide image
    TEMPLATE = "template"                        # speaker loop clip only
    SLIDE_OVER_TEMPLATE = "slide_over_template"  # slide overlaid on the speaker loop
    SLIDE_OVER_TOPIC = "slide_over_topic"        # slide overlaid on the topic slide


@dataclass
class SegmentRequest:
    """Request to synthesize one segment."""

    video_id: str
    segment_id: str
    speaker: Optional[str] = None
    topic_id: Optional[str] = None
    include_slide: bool = True
    mode: Optional[VisualMode] = None

    def __post_init__(self):
        segment_index(self.segment_id)  # validates segment_<n>

    def resolve_mode(self) -> VisualMode:
        if self.mode is not None:
            mode = self.mode
        elif self.topic_id:
            mode = VisualMode.SLIDE_OVER_TOPIC
        elif self.speaker:
            mode = VisualMode.SLIDE_OVER_TEMPLATE if self.include_slide else VisualMode.TEMPLATE
        else:
            mode = VisualMode.SLIDE

        if mode == VisualMode.SLIDE_OVER_TOPIC and not self.topic_id:
            raise ValueError("topic_id is required for slide_over_topic segments")
        return mode


class SegmentSynthesizer:
    """
    Service for rendering narrated segments with FFmpeg.

    Features:
    - Static slide, looping speaker template, or slide-over-background overlay
    - Output hard-capped to the narration duration (-t)
    - Output published by rename only after a successful encode
    """

    def __init__(
        self,
        scratch: Optional[ScratchSpace] = None,
        fetcher: Optional[AssetFetcher] = None,
        runner: Optional[FFmpegRunner] = None,
    ):
        self.settings = get_settings()
        self.scratch = scratch or ScratchSpace()
        self.fetcher = fetcher or AssetFetcher()
        self.runner = runner or FFmpegRunner()

    async def synthesize(self, request: SegmentRequest) -> str:
        """
        Download assets, render the segment, and return its scratch path.

        Downloaded inputs are always removed; the segment file exists only if
        every step succeeded.
        """
        mode = request.resolve_mode()
        video_id, segment_id = request.video_id, request.segment_id
        self.scratch.ensure_job_dir(video_id)

        logger.info(f"[segment] Start {video_id}/{segment_id} (mode={mode.value})")

        audio_path = self.scratch.asset_path(video_id, segment_id, "audio.mp3")
        slide_path = self.scratch.asset_path(video_id, segment_id, "slide.png")
        topic_path = self.scratch.asset_path(video_id, segment_id, "topic.png")
        output_path = self.scratch.segment_path(video_id, segment_id)

        try:
            await self._fetch(segment_asset_key(video_id, segment_id, "audio.mp3"), audio_path)

            base_path: Optional[str] = None
            overlay_path: Optional[str] = None

            if mode in (VisualMode.SLIDE, VisualMode.SLIDE_OVER_TEMPLATE, VisualMode.SLIDE_OVER_TOPIC):
                await self._fetch(segment_asset_key(video_id, segment_id, "slide.png"), slide_path)
                overlay_path = slide_path

            if mode in (VisualMode.TEMPLATE, VisualMode.SLIDE_OVER_TEMPLATE):
                base_path = await self._cached_speaker_loop(request.speaker)
            elif mode == VisualMode.SLIDE_OVER_TOPIC:
                await self._fetch(topic_slide_key(video_id, request.topic_id), topic_path)
                base_path = topic_path

            duration = await probe_duration(audio_path, self.runner)
            if duration <= 0:
                raise ProbeFailed(audio_path, "audio has zero duration")

            await self.render_segment(
                audio_path=audio_path,
                output_path=output_path,
                duration=duration,
                mode=mode,
                slide_path=overlay_path,
                base_path=base_path,
            )
        finally:
            self.scratch.remove_quietly(audio_path, slide_path, topic_path)

        logger.info(f"[segment] Created {output_path}")
        return output_path

    async def render_segment(
        self,
        audio_path: str,
        output_path: str,
        duration: float,
        mode: VisualMode,
        slide_path: Optional[str] = None,
        base_path: Optional[str] = None,
    ) -> str:
        """Encode one segment from local files and publish it at ``output_path``."""
        temp_path = ScratchSpace.temp_path(output_path, "render")
        cmd = self.build_command(
            audio_path=audio_path,
            output_path=temp_path,
            duration=duration,
            mode=mode,
            slide_path=slide_path,
            base_path=base_path,
        )

        try:
            await self.runner.run(cmd)
            if not os.path.isfile(temp_path) or os.path.getsize(temp_path) == 0:
                raise ExternalToolFailed("ffmpeg", 0, f"Segment render produced no output: {temp_path}")
            ScratchSpace.replace_atomically(temp_path, output_path)
        finally:
            ScratchSpace.remove_quietly(temp_path)

        return output_path

    def build_command(
        self,
        audio_path: str,
        output_path: str,
        duration: float,
        mode: VisualMode,
        slide_path: Optional[str] = None,
        base_path: Optional[str] = None,
    ) -> list[str]:
        """Build the ffmpeg command for a segment."""
        s = self.settings
        fps = str(s.output_fps)
        cmd = FFmpegCommand()

        if mode == VisualMode.SLIDE:
            if not slide_path:
                raise ValueError("slide mode requires a slide image")
            cmd.input(slide_path, "-loop", "1", "-framerate", fps)
            graph = f"[0:v]{self._fit_filter()},format=yuv420p[v]"
        elif mode == VisualMode.TEMPLATE:
            if not base_path:
                raise ValueError("template mode requires a template clip")
            cmd.input(base_path, "-stream_loop", "-1")
            graph = f"[0:v]{self._fit_filter()},fps={fps},format=yuv420p[v]"
        else:
            if not base_path or not slide_path:
                raise ValueError(f"{mode.value} mode requires a base and a slide")
            if mode == VisualMode.SLIDE_OVER_TEMPLATE:
                cmd.input(base_path, "-stream_loop", "-1")
            else:
                cmd.input(base_path, "-loop", "1", "-framerate", fps)
            cmd.input(slide_path, "-loop", "1", "-framerate", fps)
            graph = (
                f"[0:v]{self._fit_filter()},fps={fps}[base];"
                f"[1:v]{self._overlay_fit_filter()}[fg];"
                f"[base][fg]overlay=0:0:format=auto:enable='between(t,0,{duration:.3f})',"
                f"format=yuv420p[v]"
            )

        audio_index = cmd.input_count
        cmd.input(audio_path)

        return (
            cmd.filter_complex(graph)
            .map("[v]", f"{audio_index}:a")
            .output_options(
                "-t", f"{duration:.3f}",
                "-r", fps,
                "-c:v", "libx264",
                "-preset", s.ffmpeg_preset,
                "-crf", str(s.ffmpeg_crf),
                "-pix_fmt", "yuv420p",
                "-c:a", "aac",
                "-b:a", s.segment_audio_bitrate,
                "-ar", str(s.audio_sample_rate),
                "-ac", "2",
                "-movflags", "+faststart",
            )
            .output(output_path, container="mp4")
            .build()
        )

    def _fit_filter(self) -> str:
        """Scale into the output frame, letterboxing to keep the aspect ratio."""
        w, h = self.settings.output_width, self.settings.output_height
        return (
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1"
        )

    def _overlay_fit_filter(self) -> str:
        """Like _fit_filter but pads with transparency so the base stays visible."""
        w, h = self.settings.output_width, self.settings.output_height
        return (
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,format=rgba,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:color=black@0,setsar=1"
        )

    async def _fetch(self, key: str, dest_path: str) -> None:
        await self.fetcher.fetch(
            self.settings.public_url(key),
            dest_path,
            retries=self.settings.download_retries,
            backoff_seconds=self.settings.download_backoff_seconds,
        )

    async def _cached_speaker_loop(self, speaker: Optional[str]) -> str:
        key = self.settings.speaker_loop_key(speaker)
        self.scratch.ensure_template_dir()
        return await self.fetcher.ensure_cached(
            self.settings.public_url(key),
            self.scratch.template_path(key),
            retries=self.settings.download_retries,
            backoff_seconds=self.settings.download_backoff_seconds,
        )
