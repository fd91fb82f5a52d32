"""
FFmpeg command builder and runner.

Commands are always built as explicit argument lists, never shell strings, so
scratch paths and storage keys are never re-parsed by a shell.
"""

import asyncio
import logging
import os
import subprocess
from typing import Optional, Sequence

from app.errors import ExternalToolFailed

logger = logging.getLogger(__name__)


class FFmpegCommand:
    """
    Fluent builder for an ffmpeg invocation.

    Example:
        cmd = (
            FFmpegCommand()
            .input(audio_path)
            .output_options("-c:a", "aac")
            .output(out_path)
            .build()
        )
    """

    def __init__(self, binary: str = "ffmpeg", overwrite: bool = True):
        self._binary = binary
        self._global: list[str] = ["-hide_banner", "-nostdin"]
        if overwrite:
            self._global.append("-y")
        self._inputs: list[str] = []
        self._filter_complex: Optional[str] = None
        self._maps: list[str] = []
        self._output_options: list[str] = []
        self._output: Optional[str] = None
        self._input_count = 0

    def input(self, path: str, *options: str) -> "FFmpegCommand":
        """Add an input file, preceded by its input options (e.g. -loop 1)."""
        self._inputs.extend(options)
        self._inputs.extend(["-i", path])
        self._input_count += 1
        return self

    def filter_complex(self, graph: str) -> "FFmpegCommand":
        self._filter_complex = graph
        return self

    def map(self, *streams: str) -> "FFmpegCommand":
        for stream in streams:
            self._maps.extend(["-map", stream])
        return self

    def output_options(self, *options: str) -> "FFmpegCommand":
        self._output_options.extend(options)
        return self

    def output(self, path: str, container: Optional[str] = None) -> "FFmpegCommand":
        """
        Set the output path.

        Temp outputs end in ``.part``; pass ``container`` so ffmpeg does not
        guess the muxer from the extension.
        """
        if container:
            self._output_options.extend(["-f", container])
        self._output = path
        return self

    @property
    def input_count(self) -> int:
        return self._input_count

    def build(self) -> list[str]:
        if self._output is None:
            raise ValueError("FFmpeg command has no output")
        cmd = [self._binary, *self._global, *self._inputs]
        if self._filter_complex:
            cmd.extend(["-filter_complex", self._filter_complex])
        cmd.extend(self._maps)
        cmd.extend(self._output_options)
        cmd.append(self._output)
        return cmd


class FFmpegRunner:
    """
    Runs ffmpeg/ffprobe without blocking the event loop.

    Subprocesses are executed in the default thread pool (run_in_executor),
    which also works on platforms without asyncio subprocess support.
    """

    async def run(self, cmd: Sequence[str]) -> subprocess.CompletedProcess:
        """
        Run a command and return the completed process.

        Raises:
            ExternalToolFailed: On non-zero exit or when the binary is missing
        """
        cmd = list(cmd)
        tool = os.path.basename(cmd[0])
        logger.debug(f"Running: {' '.join(cmd[:12])}...")

        loop = asyncio.get_event_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: subprocess.run(cmd, capture_output=True),
            )
        except FileNotFoundError as e:
            raise ExternalToolFailed(tool, -1, str(e)) from e

        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace") if result.stderr else ""
            raise ExternalToolFailed(tool, result.returncode, stderr)

        return result


async def run_with_retry(
    runner: FFmpegRunner,
    cmd: Sequence[str],
    max_attempts: int,
    retry_delay_seconds: float,
    expected_output: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """
    Run an ffmpeg command, retrying on failure with a fixed delay.

    When ``expected_output`` is given, an attempt only counts as successful
    once that file exists.

    Raises:
        ExternalToolFailed: The last failure, once attempts are exhausted
    """
    last_error: Optional[ExternalToolFailed] = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = await runner.run(cmd)
            if expected_output and not os.path.exists(expected_output):
                raise ExternalToolFailed(
                    os.path.basename(cmd[0]), 0, f"Output not created: {expected_output}"
                )
            if attempt > 1:
                logger.info(f"ffmpeg succeeded on attempt {attempt}")
            return result
        except ExternalToolFailed as e:
            last_error = e
            logger.warning(f"ffmpeg failed (attempt {attempt}/{max_attempts}): {str(e)[:300]}")
            if attempt < max_attempts:
                await asyncio.sleep(retry_delay_seconds)

    assert last_error is not None
    raise last_error


def escape_concat_path(path: str) -> str:
    """Escape a path for a single-quoted entry in a concat demuxer list file."""
    return path.replace("'", "'\\''")


def build_concat_list(paths: Sequence[str]) -> str:
    """Render concat demuxer list content, one ``file '...'`` line per path."""
    return "".join(f"file '{escape_concat_path(p)}'\n" for p in paths)


def build_stream_copy_concat(list_path: str, output_path: str) -> list[str]:
    """ffmpeg concat-demuxer command that joins files without re-encoding."""
    return (
        FFmpegCommand()
        .input(list_path, "-f", "concat", "-safe", "0")
        .output_options("-c", "copy", "-movflags", "+faststart")
        .output(output_path, container="mp4")
        .build()
    )
