"""
Readiness Validator - decides whether a scratch file is complete.

Segment files are written by independent, asynchronous requests. The only
signal that a producer has finished is that the file is non-empty and has
not been modified for a quiet period.
"""

import asyncio
import logging
import os
import time
from enum import Enum

from app.errors import FileNotReady

logger = logging.getLogger(__name__)


class Readiness(str, Enum):
    """Observed state of a scratch file."""

    UNKNOWN = "unknown"
    WRITING = "writing"
    STABLE = "stable"
    CORRUPT = "corrupt"


def inspect(path: str, quiet_seconds: float = 5.0) -> Readiness:
    """Classify a file without waiting."""
    try:
        stat = os.stat(path)
    except OSError:
        return Readiness.UNKNOWN

    age = time.time() - stat.st_mtime
    if age < quiet_seconds:
        return Readiness.WRITING
    if stat.st_size == 0:
        return Readiness.CORRUPT
    return Readiness.STABLE


async def wait_for_accessible(path: str, retries: int = 10, interval: float = 0.2) -> None:
    """Poll until a path exists."""
    for _ in range(retries):
        if os.access(path, os.R_OK):
            return
        await asyncio.sleep(interval)
    raise FileNotReady(path, f"not accessible after {retries} retries")


async def ensure_ready(
    path: str,
    max_attempts: int = 10,
    poll_interval: float = 2.0,
    quiet_seconds: float = 5.0,
) -> None:
    """
    Wait until a file is stable: non-empty and unmodified for ``quiet_seconds``.

    Raises:
        FileNotReady: When the file is still not stable after ``max_attempts``
    """
    last_state = Readiness.UNKNOWN

    for attempt in range(1, max_attempts + 1):
        try:
            await wait_for_accessible(path, retries=10, interval=0.2)
        except FileNotReady:
            last_state = Readiness.UNKNOWN
        else:
            last_state = inspect(path, quiet_seconds)
            if last_state == Readiness.STABLE:
                return

        logger.debug(f"{path} is {last_state.value} (attempt {attempt}/{max_attempts})")
        if attempt < max_attempts:
            await asyncio.sleep(poll_interval)

    raise FileNotReady(path, f"{last_state.value} after {max_attempts} attempts")
