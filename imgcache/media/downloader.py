"""
Handles the low-level downloading of remote images over HTTP with retries and a
shared connection pool.
"""

import asyncio
import logging

import aiohttp

from imgcache.exceptions import DownloadError

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "imgcache/1.0 (+https://pypi.org/project/imgcache/)"

_connection_pool: aiohttp.ClientSession | None = None
_pool_lock = asyncio.Lock()


async def get_connection_pool(
    max_workers: int = 8, user_agent: str = DEFAULT_USER_AGENT
) -> aiohttp.ClientSession:
    """
    Gets or creates a shared aiohttp ClientSession for downloads.

    This function ensures that only one connection pool is created for the
    lifetime of the application run.

    Args:
        max_workers: Maximum concurrent connections per host.
        user_agent: The User-Agent header sent with every request.
    """
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            return _connection_pool

        connector = aiohttp.TCPConnector(
            limit=max_workers * 2,
            limit_per_host=max_workers,
            ttl_dns_cache=600,  # 10 minutes
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=60)
        _connection_pool = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={
                "User-Agent": user_agent,
                "Accept": "image/*",
                "Accept-Encoding": "gzip, deflate",
            },
        )
        log.debug(f"Created download pool with limit_per_host={max_workers}")

    return _connection_pool


async def close_connection_pool() -> None:
    """Closes the shared global connection pool."""
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            await _connection_pool.close()
            _connection_pool = None
            log.debug("Shared downloader connection pool closed.")


class Downloader:
    """A low-level byte downloader with retry logic and a size limit."""

    CHUNK_SIZE = 65536  # 64 KB
    MAX_IMAGE_BYTES = 50 * 1024 * 1024  # 50 MB

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_workers: int = 8,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_workers = max_workers
        self.user_agent = user_agent

    async def _read_body(self, response: aiohttp.ClientResponse, url: str) -> bytes:
        declared = response.content_length
        if declared is not None and declared > self.MAX_IMAGE_BYTES:
            raise DownloadError(f"'{url}' is too large ({declared} bytes).")

        buffer = bytearray()
        async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
            buffer.extend(chunk)
            if len(buffer) > self.MAX_IMAGE_BYTES:
                raise DownloadError(f"'{url}' exceeded {self.MAX_IMAGE_BYTES} bytes.")
        return bytes(buffer)

    async def download_bytes(self, url: str) -> bytes:
        """
        Downloads a resource into memory.

        Raises:
            DownloadError: If every attempt failed or the body is too large.
        """
        last_exception: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                session = await get_connection_pool(self.max_workers, self.user_agent)
                async with session.get(url, allow_redirects=True) as response:
                    response.raise_for_status()
                    data = await self._read_body(response, url)
                log.debug(f"Downloaded {len(data)} bytes from '{url}'.")
                return data
            except aiohttp.ClientResponseError as e:
                last_exception = e
                # Client errors other than throttling will not improve on retry
                if 400 <= e.status < 500 and e.status != 429:
                    break
                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for '{url}'"
                    f" failed: {e}. Retrying..."
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for '{url}'"
                    f" failed: {e}. Retrying..."
                )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))

        raise DownloadError(f"Failed to download '{url}': {last_exception}")
