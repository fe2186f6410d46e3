"""
Storage Layer.

This package handles all data persistence: the image cache directory, the
configuration file and the durable cleanup job table.
"""

from .cache import CacheStore
from .config_manager import ConfigManager
from .job_store import JobStore

__all__ = ["CacheStore", "ConfigManager", "JobStore"]
