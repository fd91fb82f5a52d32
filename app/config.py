"""
Configuration module using Pydantic Settings for environment variable management.

Only essential environment variables are exposed. All other settings are hardcoded
for consistency and simplicity.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


SegmentValidationPolicy = Literal["strict", "lenient"]


@dataclass(frozen=True)
class CompressionStep:
    """One rung of the re-encode ladder used to fit the upload size ceiling."""

    crf: int
    audio_bitrate_kbps: int
    max_height: Optional[int] = None  # None keeps the source resolution


# ============================================================
# TEMPLATE ASSETS (storage keys, relative to the public bucket URL)
# ============================================================

BACKGROUND_TEMPLATE_KEYS = [
    "99_Template/02_MoneyFailure/001.mp4",
    "99_Template/02_MoneyFailure/002.mp4",
    "99_Template/02_MoneyFailure/003.mp4",
    "99_Template/02_MoneyFailure/004.mp4",
    "99_Template/02_MoneyFailure/005.mp4",
    "99_Template/02_MoneyFailure/006.mp4",
    "99_Template/02_MoneyFailure/007.mp4",
]

BGM_TEMPLATE_KEYS = [
    "99_Template/04_BGM/01_Dark/001.mp3",
    "99_Template/04_BGM/01_Dark/002.mp3",
    "99_Template/04_BGM/01_Dark/003.mp3",
    "99_Template/04_BGM/01_Dark/004.mp3",
    "99_Template/04_BGM/01_Dark/005.mp3",
]

ENDING_TEMPLATE_KEY = "99_Template/03_Ending/MoneyFailure.mp4"

SPEAKER_LOOP_KEYS = {
    "Mia": "99_Loop/loop_mia.mp4",
    "Yu": "99_Loop/loop_Yu.mp4",
}
DEFAULT_SPEAKER = "Yu"


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    All encoding/assembly settings are hardcoded so every segment of a job
    shares one codec profile (required for stream-copy concatenation).
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "narration-assembler"
    log_level: str = "INFO"

    # Scratch filesystem shared by every stage of every job
    scratch_directory: str = "/tmp/assembler"

    # Durable storage (S3-compatible; set s3_endpoint_url for Supabase/MinIO)
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    s3_bucket: str = "projects"
    s3_endpoint_url: Optional[str] = None
    storage_public_base_url: str = "http://localhost:9000/projects"

    # Security
    assembler_api_key: Optional[str] = None  # API key for authenticating trigger requests
    assembler_webhook_secret: Optional[str] = None  # Secret for signing outgoing webhooks

    # Performance tuning
    max_concurrent_stages: int = 4  # Max background stages running at once

    # Concatenation policy for segments that never become stable
    segment_validation_policy: SegmentValidationPolicy = "strict"

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    # Diagnostics
    @property
    def stage_history_max_jobs(self) -> int:
        return 200

    # Asset fetching
    @property
    def download_retries(self) -> int:
        return 3

    @property
    def download_backoff_seconds(self) -> float:
        return 1.0

    @property
    def download_timeout_seconds(self) -> float:
        return 120.0

    # Readiness validation
    @property
    def ready_quiet_seconds(self) -> float:
        return 5.0

    @property
    def ready_max_attempts(self) -> int:
        return 10

    @property
    def ready_poll_interval_seconds(self) -> float:
        return 2.0

    # Segment encoding profile
    @property
    def output_width(self) -> int:
        return 1920

    @property
    def output_height(self) -> int:
        return 1080

    @property
    def output_fps(self) -> int:
        return 15

    @property
    def ffmpeg_preset(self) -> str:
        return "faster"

    @property
    def ffmpeg_crf(self) -> int:
        return 28

    @property
    def segment_audio_bitrate(self) -> str:
        return "96k"

    @property
    def audio_sample_rate(self) -> int:
        return 44100

    # Concatenation
    @property
    def concat_chunk_size(self) -> int:
        return 30

    @property
    def ffmpeg_max_attempts(self) -> int:
        return 3

    @property
    def ffmpeg_retry_delay_seconds(self) -> float:
        return 10.0

    @property
    def chunk_settle_seconds(self) -> float:
        return 5.0

    # Post-processing
    @property
    def background_template_keys(self) -> list[str]:
        return list(BACKGROUND_TEMPLATE_KEYS)

    @property
    def background_foreground_width(self) -> int:
        return 1280

    @property
    def background_foreground_height(self) -> int:
        return 720

    @property
    def bgm_template_keys(self) -> list[str]:
        return list(BGM_TEMPLATE_KEYS)

    @property
    def bgm_volume(self) -> float:
        return 0.15

    @property
    def bgm_fade_out_seconds(self) -> float:
        return 10.0

    @property
    def ending_template_key(self) -> str:
        return ENDING_TEMPLATE_KEY

    @property
    def ending_crossfade_seconds(self) -> float:
        return 0.7

    @property
    def post_audio_bitrate(self) -> str:
        return "128k"

    # Upload
    @property
    def upload_size_ceiling_bytes(self) -> int:
        return 47 * 1024 * 1024

    @property
    def compression_ladder(self) -> list[CompressionStep]:
        return [
            CompressionStep(crf=30, audio_bitrate_kbps=128),
            CompressionStep(crf=33, audio_bitrate_kbps=112),
            CompressionStep(crf=36, audio_bitrate_kbps=96),
            CompressionStep(crf=39, audio_bitrate_kbps=80, max_height=720),
            CompressionStep(crf=42, audio_bitrate_kbps=64, max_height=540),
        ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    def speaker_loop_key(self, speaker: Optional[str]) -> str:
        """Storage key of the looping template clip for a speaker."""
        if speaker and speaker in SPEAKER_LOOP_KEYS:
            return SPEAKER_LOOP_KEYS[speaker]
        return SPEAKER_LOOP_KEYS[DEFAULT_SPEAKER]

    def public_url(self, key: str) -> str:
        """Public download URL for an object key."""
        return f"{self.storage_public_base_url.rstrip('/')}/{key.lstrip('/')}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
