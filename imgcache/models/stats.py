"""
Dataclass for tracking fetch pipeline statistics.
"""

import time
from dataclasses import dataclass, field


@dataclass
class FetchStats:
    """Counts what the fetch pipeline did during a session."""

    requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    downloads: int = 0
    download_failures: int = 0
    decodes: int = 0
    decode_failures: int = 0
    cache_writes: int = 0
    delivered: int = 0
    cancelled: int = 0
    bytes_downloaded: int = 0
    started_at: float = field(default_factory=time.monotonic, repr=False)

    @property
    def failed(self) -> int:
        return self.download_failures + self.decode_failures

    @property
    def hit_ratio(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at
