"""
Probe - media duration via ffprobe.
"""

import logging
import math
from typing import Optional

from app.errors import ExternalToolFailed, ProbeFailed
from app.services.ffmpeg import FFmpegRunner

logger = logging.getLogger(__name__)


def parse_duration(output: str) -> Optional[float]:
    """Parse ffprobe output into seconds rounded to milliseconds."""
    try:
        value = float(output.strip())
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return round(value, 3)


async def probe_duration(path: str, runner: Optional[FFmpegRunner] = None) -> float:
    """
    Get the container duration of a local media file in seconds.

    Rounded to milliseconds so repeated probes give identical trim and fade
    offsets.

    Raises:
        ProbeFailed: If ffprobe fails or prints something that is not a duration
    """
    runner = runner or FFmpegRunner()
    cmd = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        path,
    ]

    try:
        result = await runner.run(cmd)
    except ExternalToolFailed as e:
        raise ProbeFailed(path, str(e)[:200]) from e

    output = result.stdout.decode(errors="replace") if result.stdout else ""
    duration = parse_duration(output)
    if duration is None:
        raise ProbeFailed(path, f"unparseable duration: {output.strip()[:50]!r}")

    logger.debug(f"Probed {path}: {duration:.3f}s")
    return duration
