"""
Services for the assembler.

Includes:
- Assembly stages (segment synthesis, concatenation, post-processing, upload)
- Supporting services (asset fetching, readiness, probing, storage, webhooks)
"""

from app.services.asset_fetcher import AssetFetcher
from app.services.completion_signal import CompletionSignal
from app.services.concatenator import ChunkedConcatenator
from app.services.duration_extractor import DurationExtractor
from app.services.ffmpeg import FFmpegCommand, FFmpegRunner
from app.services.post_processing import PostProcessor
from app.services.scratch import ScratchSpace
from app.services.segment_synthesizer import SegmentRequest, SegmentSynthesizer, VisualMode
from app.services.stage_runner import StageRunner
from app.services.storage_client import StorageClient
from app.services.uploader import SizeConstrainedUploader
from app.services.webhook_service import WebhookService

__all__ = [
    # Stages
    "SegmentSynthesizer",
    "SegmentRequest",
    "VisualMode",
    "ChunkedConcatenator",
    "PostProcessor",
    "SizeConstrainedUploader",
    "DurationExtractor",
    # Supporting
    "AssetFetcher",
    "CompletionSignal",
    "FFmpegCommand",
    "FFmpegRunner",
    "ScratchSpace",
    "StageRunner",
    "StorageClient",
    "WebhookService",
]
