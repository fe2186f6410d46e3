"""
A file-based image cache where freshness is derived from each file's
modification time. Enhanced with statistics tracking for cache hits and misses.
"""

import hashlib
import logging
import os
import tempfile
import time
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

from imgcache.exceptions import ConfigurationError
from imgcache.utils.formatting import to_seconds

log = logging.getLogger(__name__)

TEMP_PREFIX = ".tmp-"


def validate_cache_dir(directory: Path) -> Path:
    """
    Ensures a directory exists, is a directory and is writable.

    Returns:
        The absolute, resolved directory path.

    Raises:
        ConfigurationError: If any of the checks fails.
    """
    directory = Path(directory)
    if not directory.exists():
        raise ConfigurationError(f"Cache directory '{directory}' does not exist.")
    if not directory.is_dir():
        raise ConfigurationError(f"Cache path '{directory}' must be a directory.")
    if not os.access(directory, os.W_OK | os.X_OK):
        raise ConfigurationError(f"Cache directory '{directory}' must be writable.")
    return directory.resolve()


class CacheStore:
    """
    Keyed, TTL-aware access to the files of a single cache directory.

    No entry metadata is kept in memory: every read stats the backing file and
    compares its modification time against the caller's TTL. Stale files are
    left in place for the cleanup jobs to reclaim.
    """

    def __init__(
        self,
        cache_dir: Path,
        stats_callback: Callable[[bool], None] | None = None,
    ):
        """
        Initializes the cache store.

        Args:
            cache_dir: An existing, writable directory holding the cache files.
            stats_callback: Optional callback to report cache hits (True) or misses
            (False).

        Raises:
            ConfigurationError: If the directory is missing, not a directory or
            not writable.
        """
        self.cache_dir = validate_cache_dir(cache_dir)
        self._stats_callback = stats_callback

    @staticmethod
    def key_for(identifier: str) -> str:
        """Derives a stable cache key from a resource identifier."""
        return hashlib.sha256(str(identifier).encode("utf-8")).hexdigest()

    def path_for(self, key: str) -> Path:
        """Returns the file backing a cache key."""
        if not key or key in (".", "..") or "/" in key or os.sep in key:
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.cache_dir / key

    def _record(self, is_hit: bool) -> None:
        if self._stats_callback:
            self._stats_callback(is_hit)

    def get(self, key: str, ttl: timedelta | float) -> bytes | None:
        """
        Retrieves an entry's bytes. Returns None if the entry is missing, stale or
        unreadable.
        """
        cache_path = self.path_for(key)
        max_age = to_seconds(ttl)

        try:
            modified = cache_path.stat().st_mtime
        except FileNotFoundError:
            self._record(False)
            return None
        except OSError as e:
            log.warning(f"Cache stat failed for key '{key}': {e}")
            self._record(False)
            return None

        if time.time() - modified >= max_age:
            log.debug(f"Cache entry '{key}' is stale.")
            self._record(False)
            return None

        try:
            data = cache_path.read_bytes()
        except OSError as e:
            log.warning(f"Cache read failed for key '{key}': {e}")
            self._record(False)
            return None

        self._record(True)
        return data

    def contains(self, key: str, ttl: timedelta | float) -> bool:
        """Checks whether a fresh entry exists without reading it."""
        try:
            modified = self.path_for(key).stat().st_mtime
        except OSError:
            return False
        return time.time() - modified < to_seconds(ttl)

    def put(self, key: str, data: bytes) -> bool:
        """
        Writes or overwrites an entry. Failures are logged and otherwise ignored,
        leaving a future cache miss.

        Returns:
            True if the entry was written.
        """
        cache_path = self.path_for(key)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "wb", dir=self.cache_dir, prefix=TEMP_PREFIX, delete=False
            ) as f:
                tmp_name = f.name
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, cache_path)
            tmp_name = None
            log.debug(f"Cached {len(data)} bytes under key '{key}'.")
            return True
        except OSError as e:
            log.warning(f"Cache write failed for key '{key}': {e}")
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    log.debug(f"Could not remove temporary file '{tmp_name}'.")

    def entries(self) -> list[Path]:
        """Lists the entry files currently in the cache directory."""
        return sorted(
            p
            for p in self.cache_dir.iterdir()
            if p.is_file() and not p.name.startswith(TEMP_PREFIX)
        )

    def clear(self) -> bool:
        """Removes all entries from the cache."""
        log.info("Clearing all cache entries...")
        try:
            for cache_file in self.entries():
                cache_file.unlink()
            return True
        except OSError as e:
            log.error(f"Failed to clear cache: {e}")
            return False
