"""
Exception taxonomy for the assembly pipeline.

Transient errors (AssetUnavailable, ConcatFailed, ExternalToolFailed) are retried
locally by the component that raises them. FileNotReady and NoSegments are
data-availability preconditions and are surfaced immediately.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    pass


class AssetUnavailable(PipelineError):
    """Raised when a remote asset cannot be downloaded after all retries."""

    def __init__(self, url: str, reason: Optional[str] = None):
        self.url = url
        self.reason = reason
        message = f"Asset unavailable: {url}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class FileNotReady(PipelineError):
    """Raised when a scratch file never becomes stable."""

    def __init__(self, path: str, reason: Optional[str] = None):
        self.path = path
        self.reason = reason
        message = f"File not ready: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ProbeFailed(PipelineError):
    """Raised when a media duration cannot be determined."""

    def __init__(self, path: str, reason: Optional[str] = None):
        self.path = path
        self.reason = reason
        message = f"Probe failed: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class NoSegments(PipelineError):
    """Raised when a job has no segment files to concatenate."""

    def __init__(self, video_id: str):
        self.video_id = video_id
        super().__init__(f"No segment files found for video {video_id}")


class ConcatFailed(PipelineError):
    """Raised when a concatenation stage exhausts its retries."""

    def __init__(self, stage: str, chunk_index: Optional[int] = None, reason: Optional[str] = None):
        self.stage = stage
        self.chunk_index = chunk_index
        self.reason = reason
        message = f"Concatenation failed at stage '{stage}'"
        if chunk_index is not None:
            message += f" (chunk {chunk_index})"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ArtifactTooLarge(PipelineError):
    """Raised when the final artifact stays above the size ceiling."""

    def __init__(self, video_id: str, final_size_bytes: int):
        self.video_id = video_id
        self.final_size_bytes = final_size_bytes
        super().__init__(
            f"Final video for {video_id} is still {final_size_bytes / 1024 / 1024:.1f} MB "
            f"after compression"
        )


class UploadFailed(PipelineError):
    """Raised when durable storage rejects an upload."""

    def __init__(self, key: str, reason: Optional[str] = None):
        self.key = key
        self.reason = reason
        message = f"Upload failed: {key}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ExternalToolFailed(PipelineError):
    """Raised when ffmpeg/ffprobe exits non-zero."""

    def __init__(self, tool: str, returncode: int, stderr: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        tail = stderr[-1000:] if stderr else "Unknown error"
        super().__init__(f"{tool} exited with code {returncode}: {tail}")
