"""
Pytest configuration and fixtures.
"""

import os
import subprocess
import sys
import time
from typing import Callable, Optional

import pytest

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.config import get_settings  # noqa: E402
from app.errors import ExternalToolFailed  # noqa: E402
from app.services.scratch import ScratchSpace  # noqa: E402


def parse_concat_list(list_path: str) -> list[str]:
    """Read the paths back out of a concat demuxer list file."""
    paths = []
    with open(list_path, encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\n")
            if line.startswith("file '") and line.endswith("'"):
                paths.append(line[len("file '"):-1].replace("'\\''", "'"))
    return paths


def make_stable(path: str, age_seconds: float = 60.0) -> None:
    """Backdate a file's mtime so readiness checks treat it as finished."""
    past = time.time() - age_seconds
    os.utime(path, (past, past))


def write_file(path: str, content: bytes = b"data", age_seconds: Optional[float] = 60.0) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)
    if age_seconds is not None:
        make_stable(path, age_seconds)
    return path


class FakeFFmpegRunner:
    """
    Stand-in for FFmpegRunner that materialises outputs instead of encoding.

    - ffprobe returns ``durations[path]`` (or ``default_duration``)
    - concat-demuxer commands write the listed files' bytes, in list order
    - any other ffmpeg command calls ``on_render(cmd, output_path)``, which
      by default writes a small placeholder
    - ``fail_when(cmd)`` returning True makes that invocation exit non-zero
    """

    def __init__(
        self,
        default_duration: float = 2.0,
        durations: Optional[dict[str, float]] = None,
        on_render: Optional[Callable[[list[str], str], None]] = None,
        fail_when: Optional[Callable[[list[str]], bool]] = None,
    ):
        self.default_duration = default_duration
        self.durations = durations or {}
        self.on_render = on_render or self._write_placeholder
        self.fail_when = fail_when
        self.commands: list[list[str]] = []

    @property
    def ffmpeg_commands(self) -> list[list[str]]:
        return [c for c in self.commands if c[0] == "ffmpeg"]

    async def run(self, cmd):
        cmd = list(cmd)
        self.commands.append(cmd)

        if self.fail_when and self.fail_when(cmd):
            raise ExternalToolFailed(cmd[0], 1, "simulated failure")

        if cmd[0] == "ffprobe":
            duration = self.durations.get(cmd[-1], self.default_duration)
            return subprocess.CompletedProcess(cmd, 0, stdout=f"{duration}\n".encode(), stderr=b"")

        output_path = cmd[-1]
        if "concat" in cmd and cmd[cmd.index("concat") - 1] == "-f":
            list_path = cmd[cmd.index("-i") + 1]
            with open(output_path, "wb") as out:
                for path in parse_concat_list(list_path):
                    with open(path, "rb") as f:
                        out.write(f.read())
        else:
            self.on_render(cmd, output_path)

        return subprocess.CompletedProcess(cmd, 0, stdout=b"", stderr=b"")

    @staticmethod
    def _write_placeholder(cmd: list[str], output_path: str) -> None:
        with open(output_path, "wb") as f:
            f.write(b"rendered")


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Fresh settings per test, pointing the scratch root into tmp_path."""
    monkeypatch.setenv("SCRATCH_DIRECTORY", str(tmp_path / "scratch"))
    monkeypatch.setenv("STORAGE_PUBLIC_BASE_URL", "http://storage.test/projects")
    monkeypatch.delenv("ASSEMBLER_API_KEY", raising=False)
    monkeypatch.delenv("ASSEMBLER_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("SEGMENT_VALIDATION_POLICY", raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def scratch(tmp_path):
    """Scratch space rooted in the test's temp directory."""
    root = tmp_path / "scratch"
    root.mkdir(exist_ok=True)
    return ScratchSpace(str(root))


@pytest.fixture
def fake_runner():
    return FakeFFmpegRunner()


@pytest.fixture
def mock_storage(mocker):
    """Mock storage client; uploads succeed and report a public URL."""
    mock = mocker.MagicMock()

    async def upload_file(local_path, key, content_type="video/mp4", cache_control="max-age=3600"):
        result = mocker.MagicMock()
        result.key = key
        result.url = f"http://storage.test/projects/{key}"
        result.file_size_bytes = os.path.getsize(local_path)
        return result

    mock.upload_file = mocker.AsyncMock(side_effect=upload_file)
    mock.put_bytes = mocker.AsyncMock()
    return mock


@pytest.fixture
def mock_fetcher(mocker):
    """Mock asset fetcher that writes a small file wherever it is asked to."""
    mock = mocker.MagicMock()

    async def fetch(url, dest_path, retries=3, backoff_seconds=1.0):
        write_file(dest_path, f"asset:{url}".encode(), age_seconds=None)

    async def ensure_cached(url, cache_path, retries=3, backoff_seconds=1.0):
        if not os.path.exists(cache_path):
            write_file(cache_path, f"template:{url}".encode(), age_seconds=None)
        return cache_path

    mock.fetch = mocker.AsyncMock(side_effect=fetch)
    mock.ensure_cached = mocker.AsyncMock(side_effect=ensure_cached)
    return mock
