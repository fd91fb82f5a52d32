"""
Storage client for durable object storage (S3-compatible).

Holds source assets, completion markers and final videos. Every write is an
overwrite, so re-running a stage is idempotent at the storage layer.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import get_settings
from app.errors import UploadFailed

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Result of a storage upload."""

    url: str
    bucket: str
    key: str
    file_size_bytes: int
    content_type: str


def final_video_key(video_id: str) -> str:
    return f"{video_id}/{video_id}.mp4"


def segment_asset_key(video_id: str, segment_id: str, name: str) -> str:
    return f"{video_id}/{segment_id}/{name}"


def topic_slide_key(video_id: str, topic_id: str) -> str:
    return f"{video_id}/topic/{topic_id}.png"


class StorageClient:
    """
    Service for interacting with durable storage.

    Features:
    - Lazy boto3 client (custom endpoint for Supabase/MinIO)
    - File and small-object uploads run in the thread pool
    - Public URL generation for assets fetched over HTTP
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        self.settings = get_settings()
        self.bucket = bucket or self.settings.s3_bucket
        self.region = region or self.settings.aws_region
        self.endpoint_url = endpoint_url or self.settings.s3_endpoint_url
        self._client = None

    @property
    def client(self):
        """Lazy-initialize S3 client."""
        if self._client is None:
            config = {"region_name": self.region}
            if self.endpoint_url:
                config["endpoint_url"] = self.endpoint_url
            if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
                config["aws_access_key_id"] = self.settings.aws_access_key_id
                config["aws_secret_access_key"] = self.settings.aws_secret_access_key

            self._client = boto3.client("s3", **config)
            logger.info(f"Storage client initialized for bucket: {self.bucket}")

        return self._client

    def public_url(self, key: str) -> str:
        return self.settings.public_url(key)

    async def upload_file(
        self,
        local_path: str,
        key: str,
        content_type: str = "video/mp4",
        cache_control: str = "max-age=3600",
    ) -> UploadResult:
        """
        Upload a local file, overwriting any existing object.

        Raises:
            UploadFailed: If the file is missing or storage rejects the upload
        """
        if not os.path.isfile(local_path):
            raise UploadFailed(key, f"File not found: {local_path}")

        file_size = os.path.getsize(local_path)
        logger.info(f"Uploading {local_path} to {self.bucket}/{key}")

        extra_args = {"ContentType": content_type, "CacheControl": cache_control}
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.upload_file(
                    local_path,
                    self.bucket,
                    key,
                    ExtraArgs=extra_args,
                ),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload to storage: {e}")
            raise UploadFailed(key, str(e)) from e

        logger.info(f"Uploaded {file_size / 1024 / 1024:.2f} MB to {key}")
        return UploadResult(
            url=self.public_url(key),
            bucket=self.bucket,
            key=key,
            file_size_bytes=file_size,
            content_type=content_type,
        )

    async def put_bytes(
        self,
        key: str,
        data: bytes,
        content_type: str = "text/plain",
        cache_control: str = "no-cache",
    ) -> UploadResult:
        """
        Write a small object (markers, duration files).

        Raises:
            UploadFailed: If storage rejects the write
        """
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                    CacheControl=cache_control,
                ),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to write {key}: {e}")
            raise UploadFailed(key, str(e)) from e

        return UploadResult(
            url=self.public_url(key),
            bucket=self.bucket,
            key=key,
            file_size_bytes=len(data),
            content_type=content_type,
        )


_storage_client: Optional[StorageClient] = None


def get_storage_client() -> StorageClient:
    """Get or create the global storage client instance."""
    global _storage_client
    if _storage_client is None:
        _storage_client = StorageClient()
    return _storage_client
