"""
Asset Fetcher - downloads remote assets into the scratch directory.

Downloads stream into a unique temp file next to the destination and are
renamed over it only once complete, so readers never observe a truncated
file at the destination path.
"""

import asyncio
import logging
import os
from typing import Optional

import httpx

from app.config import get_settings
from app.errors import AssetUnavailable
from app.services.scratch import ScratchSpace

logger = logging.getLogger(__name__)


class AssetFetcher:
    """
    HTTP downloader with bounded retry.

    Features:
    - Fixed-delay retries on non-2xx responses and transport errors
    - Atomic publish (temp file + rename)
    - Template cache helper shared across jobs
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.timeout = timeout_seconds or settings.download_timeout_seconds
        self._transport = transport

    async def fetch(
        self,
        url: str,
        dest_path: str,
        retries: int = 3,
        backoff_seconds: float = 1.0,
    ) -> None:
        """
        Download ``url`` to ``dest_path``, replacing any existing file.

        Raises:
            AssetUnavailable: After ``retries`` failed attempts
        """
        os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)
        last_error: Optional[str] = None

        for attempt in range(1, retries + 1):
            temp_path = ScratchSpace.unique_temp_path(dest_path)
            try:
                size = await self._download_to(url, temp_path)
                ScratchSpace.replace_atomically(temp_path, dest_path)
                logger.info(f"Downloaded {url} ({size / 1024:.1f} KB) -> {dest_path}")
                return
            except httpx.HTTPStatusError as e:
                last_error = f"HTTP {e.response.status_code}"
            except httpx.RequestError as e:
                last_error = f"Request error: {e}"
            finally:
                ScratchSpace.remove_quietly(temp_path)

            logger.warning(f"Download failed: {url} (attempt {attempt}/{retries}, {last_error})")
            if attempt < retries:
                await asyncio.sleep(backoff_seconds)

        raise AssetUnavailable(url, last_error)

    async def ensure_cached(
        self,
        url: str,
        cache_path: str,
        retries: int = 3,
        backoff_seconds: float = 1.0,
    ) -> str:
        """Return a cached copy of a template asset, downloading it on first use."""
        if os.path.isfile(cache_path) and os.path.getsize(cache_path) > 0:
            logger.info(f"Using cached template: {cache_path}")
            return cache_path

        logger.info(f"Downloading template: {url}")
        await self.fetch(url, cache_path, retries=retries, backoff_seconds=backoff_seconds)
        return cache_path

    async def _download_to(self, url: str, path: str) -> int:
        """Stream a response body into ``path``; returns bytes written."""
        written = 0
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
                        written += len(chunk)
        return written
