"""
imgcache: a TTL-based on-disk image cache with a cancellable async fetch
pipeline and durable, backoff-aware cleanup jobs.
"""

__version__ = "1.0.0"
