"""
Audio Converter - raw PCM from the speech synthesizer to MP3.
"""

import logging
import os
import tempfile
from typing import Optional

from app.services.ffmpeg import FFmpegCommand, FFmpegRunner

logger = logging.getLogger(__name__)

PCM_SAMPLE_RATE = 24000
PCM_CHANNELS = 1


def build_pcm_to_mp3_command(
    pcm_path: str,
    mp3_path: str,
    sample_rate: int = PCM_SAMPLE_RATE,
    channels: int = PCM_CHANNELS,
) -> list[str]:
    """Signed 16-bit little-endian PCM in, VBR MP3 (quality 2) out."""
    return (
        FFmpegCommand()
        .input(pcm_path, "-f", "s16le", "-ar", str(sample_rate), "-ac", str(channels))
        .output_options("-c:a", "libmp3lame", "-qscale:a", "2")
        .output(mp3_path, container="mp3")
        .build()
    )


async def pcm_to_mp3(
    pcm: bytes,
    runner: Optional[FFmpegRunner] = None,
    sample_rate: int = PCM_SAMPLE_RATE,
    channels: int = PCM_CHANNELS,
) -> bytes:
    """
    Convert a PCM buffer to MP3 bytes.

    Raises:
        ValueError: If the buffer is empty
        ExternalToolFailed: If ffmpeg rejects the input
    """
    if not pcm:
        raise ValueError("PCM buffer is empty")

    runner = runner or FFmpegRunner()
    with tempfile.TemporaryDirectory(prefix="pcm_") as work_dir:
        pcm_path = os.path.join(work_dir, "input.pcm")
        mp3_path = os.path.join(work_dir, "output.mp3")

        with open(pcm_path, "wb") as f:
            f.write(pcm)

        await runner.run(build_pcm_to_mp3_command(pcm_path, mp3_path, sample_rate, channels))

        with open(mp3_path, "rb") as f:
            mp3 = f.read()

    logger.info(f"Converted {len(pcm)} bytes of PCM to {len(mp3)} bytes of MP3")
    return mp3
