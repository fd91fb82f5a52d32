"""
Scratch Space - deterministic layout of the shared scratch filesystem.

Layout:
    {root}/
    ├── _templates/                      cached background/BGM/ending/loop clips
    └── {video_id}/
        ├── {video_id}_segment_0.mp4     rendered segments
        ├── {video_id}_chunk_0.txt       chunk list files
        ├── {video_id}_chunk_0.mp4       chunk outputs
        ├── {video_id}.mp4               final artifact
        └── *.part                       in-flight writes (never read downstream)

The only mutation primitive for canonical paths is "write a temp file in the
same directory, then os.replace() it over the canonical path".
"""

import logging
import os
import re
import shutil
import uuid
from typing import Optional

from app.config import get_settings

logger = logging.getLogger(__name__)

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
SEGMENT_ID_PATTERN = re.compile(r"^segment_(\d+)$")

TEMPLATE_CACHE_DIRNAME = "_templates"


def validate_video_id(video_id: str) -> str:
    """Ensure a video ID is a single safe path component."""
    if not video_id or not VIDEO_ID_PATTERN.match(video_id):
        raise ValueError(f"Invalid video id: {video_id!r}")
    return video_id


def segment_index(segment_id: str) -> int:
    """Numeric ordering key of a segment ID (``segment_12`` -> 12)."""
    match = SEGMENT_ID_PATTERN.match(segment_id)
    if not match:
        raise ValueError(f"Invalid segment id: {segment_id!r} (expected segment_<n>)")
    return int(match.group(1))


class ScratchSpace:
    """Namespaced view over the scratch directory, keyed by job and file kind."""

    def __init__(self, root: Optional[str] = None):
        self.root = str(root or get_settings().scratch_directory)

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    @property
    def template_dir(self) -> str:
        return os.path.join(self.root, TEMPLATE_CACHE_DIRNAME)

    def job_dir(self, video_id: str) -> str:
        return os.path.join(self.root, validate_video_id(video_id))

    def ensure_job_dir(self, video_id: str) -> str:
        path = self.job_dir(video_id)
        os.makedirs(path, exist_ok=True)
        return path

    def ensure_template_dir(self) -> str:
        os.makedirs(self.template_dir, exist_ok=True)
        return self.template_dir

    # ------------------------------------------------------------------
    # File naming
    # ------------------------------------------------------------------

    def segment_path(self, video_id: str, segment_id: str) -> str:
        index = segment_index(segment_id)
        return os.path.join(self.job_dir(video_id), f"{video_id}_segment_{index}.mp4")

    def asset_path(self, video_id: str, segment_id: str, name: str) -> str:
        """Downloaded per-segment input (audio, slide, topic image)."""
        return os.path.join(self.job_dir(video_id), f"{video_id}_{segment_id}_{name}")

    def chunk_list_path(self, video_id: str, chunk_index: int) -> str:
        return os.path.join(self.job_dir(video_id), f"{video_id}_chunk_{chunk_index}.txt")

    def chunk_path(self, video_id: str, chunk_index: int) -> str:
        return os.path.join(self.job_dir(video_id), f"{video_id}_chunk_{chunk_index}.mp4")

    def final_list_path(self, video_id: str) -> str:
        return os.path.join(self.job_dir(video_id), f"{video_id}_final_list.txt")

    def final_path(self, video_id: str) -> str:
        return os.path.join(self.job_dir(video_id), f"{video_id}.mp4")

    def candidate_path(self, video_id: str, attempt: int) -> str:
        """Compressed upload candidate produced by the size-constrained uploader."""
        return os.path.join(self.job_dir(video_id), f"{video_id}_compressed_{attempt}.mp4")

    def template_path(self, key: str) -> str:
        """Deterministic cache filename for a remote template key."""
        safe = key.strip("/").replace("/", "__")
        return os.path.join(self.template_dir, safe)

    @staticmethod
    def temp_path(canonical_path: str, tag: str = "tmp") -> str:
        """In-flight path next to a canonical path; never matches segment naming."""
        return f"{canonical_path}.{tag}.part"

    @staticmethod
    def unique_temp_path(canonical_path: str) -> str:
        return f"{canonical_path}.{uuid.uuid4().hex[:12]}.part"

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_segments(self, video_id: str) -> list[str]:
        """
        Segment files of a job, ordered by their numeric index.

        Sorting is numeric (segment_2 before segment_10), never lexicographic.
        """
        job_dir = self.job_dir(video_id)
        if not os.path.isdir(job_dir):
            return []

        pattern = re.compile(rf"^{re.escape(video_id)}_segment_(\d+)\.mp4$")
        found: list[tuple[int, str]] = []
        for name in os.listdir(job_dir):
            match = pattern.match(name)
            if match:
                found.append((int(match.group(1)), os.path.join(job_dir, name)))

        found.sort(key=lambda item: item[0])
        return [path for _, path in found]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    @staticmethod
    def replace_atomically(temp_path: str, canonical_path: str) -> None:
        """Publish a fully written temp file at its canonical path."""
        os.replace(temp_path, canonical_path)

    @staticmethod
    def remove_quietly(*paths: str) -> None:
        """Remove intermediates; a file that is already gone is not an error."""
        for path in paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to remove {path}: {e}")

    def purge_job(self, video_id: str) -> int:
        """Delete the whole scratch namespace of a job. Returns files removed."""
        job_dir = self.job_dir(video_id)
        if not os.path.isdir(job_dir):
            return 0
        count = sum(len(files) for _, _, files in os.walk(job_dir))
        shutil.rmtree(job_dir)
        logger.info(f"Purged scratch for {video_id} ({count} files)")
        return count
