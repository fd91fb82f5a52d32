"""
Tests for duration probing.
"""

import asyncio
import subprocess

import pytest

from app.errors import ProbeFailed
from app.services.probe import parse_duration, probe_duration
from tests.conftest import FakeFFmpegRunner


class StdoutRunner:
    """Runner returning a fixed ffprobe stdout."""

    def __init__(self, stdout: bytes):
        self.stdout = stdout
        self.commands = []

    async def run(self, cmd):
        self.commands.append(list(cmd))
        return subprocess.CompletedProcess(cmd, 0, stdout=self.stdout, stderr=b"")


@pytest.mark.parametrize(
    "output,expected",
    [
        ("6.042100\n", 6.042),
        ("2", 2.0),
        ("0.0004", 0.0),
        ("  12.3456  ", 12.346),
    ],
)
def test_parse_duration_rounds_to_milliseconds(output, expected):
    assert parse_duration(output) == expected


@pytest.mark.parametrize("output", ["N/A", "", "nan", "inf", "-1.5", "abc"])
def test_parse_duration_rejects_invalid(output):
    assert parse_duration(output) is None


def test_probe_duration_command():
    runner = StdoutRunner(b"3.5\n")

    duration = asyncio.run(probe_duration("/s/audio.mp3", runner))

    assert duration == 3.5
    assert runner.commands[0] == [
        "ffprobe", "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        "/s/audio.mp3",
    ]


def test_probe_duration_unparseable_output():
    with pytest.raises(ProbeFailed) as exc_info:
        asyncio.run(probe_duration("/s/audio.mp3", StdoutRunner(b"N/A\n")))
    assert exc_info.value.path == "/s/audio.mp3"


def test_probe_duration_tool_failure():
    runner = FakeFFmpegRunner(fail_when=lambda cmd: True)
    with pytest.raises(ProbeFailed):
        asyncio.run(probe_duration("/s/audio.mp3", runner))
