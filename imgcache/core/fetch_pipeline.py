"""
Loads images through the cache: lookup, download on a miss, decode, write-back
and delivery to a caller-supplied callback.
"""

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any

from PIL import Image

from imgcache.exceptions import DecodeError, DownloadError
from imgcache.media import Downloader, ImageCodec
from imgcache.models.stats import FetchStats
from imgcache.storage.cache import CacheStore

log = logging.getLogger(__name__)

ImageCallback = Callable[[Image.Image], Any]


class FetchHandle:
    """Cancellation handle for one in-flight `load` request."""

    def __init__(self, identifier: str, task: asyncio.Task):
        self.identifier = identifier
        self._task = task

    def cancel(self) -> bool:
        """
        Cancels the remaining steps. The callback will not fire unless it has
        already been invoked.
        """
        return self._task.cancel()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        """Waits until the request has been delivered, aborted or cancelled."""
        await asyncio.wait({self._task})


class FetchPipeline:
    """
    Orchestrates image requests across three execution contexts: an I/O thread
    pool for cache files, a CPU thread pool for decoding, and the event loop,
    which performs network transfers and invokes the callbacks.

    Requests are independent: concurrent loads of the same identifier each do
    their own lookup, download and write.
    """

    def __init__(
        self,
        cache: CacheStore,
        ttl: timedelta | float,
        downloader: Downloader | None = None,
        codec: ImageCodec | None = None,
        io_workers: int = 8,
        decode_workers: int = 2,
        stats: FetchStats | None = None,
    ):
        """
        Args:
            cache: Store holding the encoded images.
            ttl: Maximum age of a cache entry before it is ignored.
            downloader: Network client used on cache misses.
            codec: Decoder/encoder for image bytes.
            io_workers: Threads available for cache reads and writes.
            decode_workers: Threads available for decoding and encoding.
            stats: Counters to update; a fresh instance is created if omitted.
        """
        self.cache = cache
        self.ttl = ttl
        self.downloader = downloader or Downloader(max_workers=io_workers)
        self.codec = codec or ImageCodec()
        self.stats = stats or FetchStats()
        self._io_executor = ThreadPoolExecutor(
            max_workers=io_workers, thread_name_prefix="imgcache-io"
        )
        self._cpu_executor = ThreadPoolExecutor(
            max_workers=decode_workers, thread_name_prefix="imgcache-decode"
        )
        self._inflight: set[asyncio.Task] = set()

    async def _run_io(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._io_executor, func, *args)

    async def _run_cpu(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._cpu_executor, func, *args)

    async def _decode(self, data: bytes, identifier: str) -> Image.Image | None:
        try:
            image = await self._run_cpu(self.codec.decode, data)
        except DecodeError as e:
            self.stats.decode_failures += 1
            log.warning(f"Could not decode image for '{identifier}': {e}")
            return None
        self.stats.decodes += 1
        return image

    async def _write_back(self, key: str, image: Image.Image, identifier: str) -> None:
        try:
            encoded = await self._run_cpu(self.codec.encode, image)
        except DecodeError as e:
            log.warning(f"Not caching '{identifier}': {e}")
            return
        if await self._run_io(self.cache.put, key, encoded):
            self.stats.cache_writes += 1

    async def fetch(self, identifier: str) -> Image.Image | None:
        """
        Runs the lookup/download/decode/write chain for one identifier.

        Returns:
            The decoded image, or None when the download or the decode failed.
        """
        self.stats.requests += 1
        key = self.cache.key_for(identifier)

        cached = await self._run_io(self.cache.get, key, self.ttl)
        if cached is not None:
            self.stats.cache_hits += 1
            log.debug(f"Cache hit for '{identifier}'.")
            # A corrupt cached file is left for the cleanup jobs to remove
            return await self._decode(cached, identifier)

        self.stats.cache_misses += 1
        try:
            data = await self.downloader.download_bytes(identifier)
        except DownloadError as e:
            self.stats.download_failures += 1
            log.warning(f"Could not download '{identifier}': {e}")
            return None
        self.stats.downloads += 1
        self.stats.bytes_downloaded += len(data)

        image = await self._decode(data, identifier)
        if image is None:
            return None

        await self._write_back(key, image, identifier)
        return image

    async def _load(self, identifier: str, callback: ImageCallback) -> None:
        try:
            image = await self.fetch(identifier)
        except asyncio.CancelledError:
            self.stats.cancelled += 1
            log.debug(f"Load of '{identifier}' cancelled.")
            raise
        except Exception as e:
            log.error(
                f"Unexpected error while loading '{identifier}': {e}",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            return

        if image is None:
            return

        self.stats.delivered += 1
        try:
            callback(image)
        except Exception as e:
            log.error(f"Image callback for '{identifier}' raised: {e}", exc_info=True)

    def load(self, identifier: str, callback: ImageCallback) -> FetchHandle:
        """
        Starts loading an image and returns immediately.

        The callback is invoked at most once, on the running event loop, with the
        decoded image. It is never invoked when the request fails or is cancelled.
        Must be called from within a running event loop.
        """
        task = asyncio.create_task(self._load(identifier, callback))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return FetchHandle(identifier, task)

    async def close(self) -> None:
        """Cancels pending requests and shuts the worker pools down."""
        pending = [task for task in self._inflight if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        self._io_executor.shutdown(wait=False, cancel_futures=True)
        self._cpu_executor.shutdown(wait=False, cancel_futures=True)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
