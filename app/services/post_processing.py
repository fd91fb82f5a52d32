"""
Post-Processors - in-place transforms of a job's final artifact.

Each transform reads the final video, renders into a temp file next to it and
renames the temp file over the final video. A failed transform leaves the
previous final video untouched.
"""

import logging
import os
import random
from typing import Callable, Optional

from app.config import get_settings
from app.errors import FileNotReady, ProbeFailed
from app.services.asset_fetcher import AssetFetcher
from app.services.ffmpeg import (
    FFmpegCommand,
    FFmpegRunner,
    build_concat_list,
    build_stream_copy_concat,
    run_with_retry,
)
from app.services.probe import probe_duration
from app.services.readiness import wait_for_accessible
from app.services.scratch import ScratchSpace

logger = logging.getLogger(__name__)


def bgm_fade_window(duration: float, fade_seconds: float) -> tuple[float, float]:
    """Start and length of the BGM fade-out so that it ends at ``duration``."""
    fade = min(fade_seconds, duration)
    start = max(duration - fade_seconds, 0.0)
    return round(start, 3), round(fade, 3)


class PostProcessor:
    """
    Service for background overlay, BGM mixing and ending append.

    Template clips are cached under the scratch template directory and reused
    by every job.
    """

    def __init__(
        self,
        scratch: Optional[ScratchSpace] = None,
        fetcher: Optional[AssetFetcher] = None,
        runner: Optional[FFmpegRunner] = None,
        rng: Optional[random.Random] = None,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
    ):
        self.settings = get_settings()
        self.scratch = scratch or ScratchSpace()
        self.fetcher = fetcher or AssetFetcher()
        self.runner = runner or FFmpegRunner()
        self.rng = rng or random.Random()
        self.max_attempts = max_attempts or self.settings.ffmpeg_max_attempts
        self.retry_delay = (
            retry_delay_seconds if retry_delay_seconds is not None
            else self.settings.ffmpeg_retry_delay_seconds
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def overlay_background(self, video_id: str, template_key: Optional[str] = None) -> str:
        """Center the video over a looping background clip."""
        key = template_key or self.rng.choice(self.settings.background_template_keys)
        logger.info(f"[background] {video_id}: using {key}")

        return await self._transform(
            video_id,
            tag="bg",
            template_key=key,
            build=lambda final, template, temp, d: self.build_background_command(
                final, template, temp, d
            ),
        )

    async def mix_bgm(
        self,
        video_id: str,
        template_key: Optional[str] = None,
        fade_seconds: Optional[float] = None,
    ) -> str:
        """Mix a looping, attenuated music bed under the narration."""
        key = template_key or self.rng.choice(self.settings.bgm_template_keys)
        fade = fade_seconds if fade_seconds is not None else self.settings.bgm_fade_out_seconds
        logger.info(f"[bgm] {video_id}: using {key}")

        return await self._transform(
            video_id,
            tag="bgm",
            template_key=key,
            build=lambda final, template, temp, d: self.build_bgm_command(
                final, template, temp, d, fade
            ),
        )

    async def append_ending(self, video_id: str, crossfade: bool = False) -> str:
        """Append the ending clip, by stream-copy concat or by a crossfade re-encode."""
        key = self.settings.ending_template_key
        logger.info(f"[ending] {video_id}: {'crossfade' if crossfade else 'concat'} with {key}")

        if crossfade:
            return await self._transform(
                video_id,
                tag="ending",
                template_key=key,
                build=lambda final, template, temp, d: self.build_crossfade_command(
                    final, template, temp, d
                ),
            )

        list_path = os.path.join(self.scratch.job_dir(video_id), f"{video_id}_ending_list.txt")

        def build(final: str, template: str, temp: str, duration: float) -> list[str]:
            with open(list_path, "w", encoding="utf-8") as f:
                f.write(build_concat_list([final, template]))
            return build_stream_copy_concat(list_path, temp)

        try:
            return await self._transform(video_id, tag="ending", template_key=key, build=build)
        finally:
            self.scratch.remove_quietly(list_path)

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def build_background_command(
        self,
        final_path: str,
        background_path: str,
        output_path: str,
        duration: float,
    ) -> list[str]:
        s = self.settings
        graph = (
            f"[0:v]scale={s.output_width}:{s.output_height},setsar=1[bg];"
            f"[1:v]scale={s.background_foreground_width}:{s.background_foreground_height},setsar=1[fg];"
            f"[bg][fg]overlay=(W-w)/2:(H-h)/2,fps={s.output_fps},format=yuv420p[v]"
        )
        return (
            FFmpegCommand()
            .input(background_path, "-stream_loop", "-1")
            .input(final_path)
            .filter_complex(graph)
            .map("[v]", "1:a?")
            .output_options(
                "-t", f"{duration:.3f}",
                "-c:v", "libx264",
                "-preset", s.ffmpeg_preset,
                "-crf", str(s.ffmpeg_crf),
                "-pix_fmt", "yuv420p",
                "-c:a", "aac",
                "-b:a", s.post_audio_bitrate,
                "-movflags", "+faststart",
            )
            .output(output_path, container="mp4")
            .build()
        )

    def build_bgm_command(
        self,
        final_path: str,
        bgm_path: str,
        output_path: str,
        duration: float,
        fade_seconds: float,
    ) -> list[str]:
        s = self.settings
        fade_start, fade_length = bgm_fade_window(duration, fade_seconds)
        # normalize=0 keeps the narration at its original level
        graph = (
            f"[1:a]volume={s.bgm_volume},"
            f"afade=t=out:st={fade_start:.3f}:d={fade_length:.3f}[bgm];"
            f"[0:a][bgm]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[a]"
        )
        return (
            FFmpegCommand()
            .input(final_path)
            .input(bgm_path, "-stream_loop", "-1")
            .filter_complex(graph)
            .map("0:v", "[a]")
            .output_options(
                "-t", f"{duration:.3f}",
                "-c:v", "copy",
                "-c:a", "aac",
                "-b:a", s.post_audio_bitrate,
                "-ar", str(s.audio_sample_rate),
                "-movflags", "+faststart",
            )
            .output(output_path, container="mp4")
            .build()
        )

    def build_crossfade_command(
        self,
        final_path: str,
        ending_path: str,
        output_path: str,
        duration: float,
    ) -> list[str]:
        s = self.settings
        window = s.ending_crossfade_seconds
        offset = max(duration - window, 0.0)
        video_norm = (
            f"fps={s.output_fps},"
            f"scale={s.output_width}:{s.output_height}:force_original_aspect_ratio=decrease,"
            f"pad={s.output_width}:{s.output_height}:(ow-iw)/2:(oh-ih)/2,setsar=1,format=yuv420p"
        )
        audio_norm = (
            f"aresample={s.audio_sample_rate},"
            f"aformat=sample_fmts=fltp:channel_layouts=stereo"
        )
        graph = (
            f"[0:v]{video_norm}[v0];[1:v]{video_norm}[v1];"
            f"[v0][v1]xfade=transition=fade:duration={window}:offset={offset:.3f}[v];"
            f"[0:a]{audio_norm}[a0];[1:a]{audio_norm}[a1];"
            f"[a0][a1]acrossfade=d={window}:c1=tri:c2=tri[a]"
        )
        return (
            FFmpegCommand()
            .input(final_path)
            .input(ending_path)
            .filter_complex(graph)
            .map("[v]", "[a]")
            .output_options(
                "-c:v", "libx264",
                "-preset", s.ffmpeg_preset,
                "-crf", str(s.ffmpeg_crf),
                "-pix_fmt", "yuv420p",
                "-c:a", "aac",
                "-b:a", s.post_audio_bitrate,
                "-movflags", "+faststart",
            )
            .output(output_path, container="mp4")
            .build()
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transform(
        self,
        video_id: str,
        tag: str,
        template_key: str,
        build: Callable[[str, str, str, float], list[str]],
    ) -> str:
        final_path = self.scratch.final_path(video_id)
        if not os.path.isfile(final_path):
            raise FileNotReady(final_path, "final video does not exist")
        await wait_for_accessible(final_path, retries=10, interval=0.5)

        template_path = await self._cached_template(template_key)

        duration = await probe_duration(final_path, self.runner)
        if duration <= 0:
            raise ProbeFailed(final_path, "final video has zero duration")

        temp_path = ScratchSpace.temp_path(final_path, tag)
        try:
            cmd = build(final_path, template_path, temp_path, duration)
            await run_with_retry(
                self.runner,
                cmd,
                max_attempts=self.max_attempts,
                retry_delay_seconds=self.retry_delay,
                expected_output=temp_path,
            )
            ScratchSpace.replace_atomically(temp_path, final_path)
        finally:
            self.scratch.remove_quietly(temp_path)

        logger.info(f"[{tag}] {video_id}: final video updated ({duration:.1f}s source)")
        return final_path

    async def _cached_template(self, key: str) -> str:
        self.scratch.ensure_template_dir()
        return await self.fetcher.ensure_cached(
            self.settings.public_url(key),
            self.scratch.template_path(key),
            retries=self.settings.download_retries,
            backoff_seconds=self.settings.download_backoff_seconds,
        )
