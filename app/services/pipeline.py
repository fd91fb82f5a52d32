"""
Pipeline services wired to one scratch root, downloader and ffmpeg runner.
"""

from dataclasses import dataclass
from typing import Optional

from app.services.asset_fetcher import AssetFetcher
from app.services.concatenator import ChunkedConcatenator
from app.services.duration_extractor import DurationExtractor
from app.services.ffmpeg import FFmpegRunner
from app.services.post_processing import PostProcessor
from app.services.scratch import ScratchSpace
from app.services.segment_synthesizer import SegmentSynthesizer
from app.services.storage_client import StorageClient, get_storage_client
from app.services.uploader import SizeConstrainedUploader


@dataclass
class PipelineServices:
    """The stage implementations the trigger endpoints dispatch to."""

    scratch: ScratchSpace
    synthesizer: SegmentSynthesizer
    durations: DurationExtractor
    concatenator: ChunkedConcatenator
    post_processor: PostProcessor
    uploader: SizeConstrainedUploader

    @classmethod
    def create(
        cls,
        scratch: Optional[ScratchSpace] = None,
        fetcher: Optional[AssetFetcher] = None,
        storage: Optional[StorageClient] = None,
        runner: Optional[FFmpegRunner] = None,
    ) -> "PipelineServices":
        scratch = scratch or ScratchSpace()
        fetcher = fetcher or AssetFetcher()
        storage = storage or get_storage_client()
        runner = runner or FFmpegRunner()

        return cls(
            scratch=scratch,
            synthesizer=SegmentSynthesizer(scratch=scratch, fetcher=fetcher, runner=runner),
            durations=DurationExtractor(
                scratch=scratch, fetcher=fetcher, storage=storage, runner=runner
            ),
            concatenator=ChunkedConcatenator(scratch=scratch, runner=runner),
            post_processor=PostProcessor(scratch=scratch, fetcher=fetcher, runner=runner),
            uploader=SizeConstrainedUploader(scratch=scratch, storage=storage, runner=runner),
        )
