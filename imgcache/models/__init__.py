"""
Data Models Layer.

This package contains the models that define the core data structures used
throughout the application: configuration, fetch statistics and job records.
"""

from .config import CacheConfig
from .job import JobKind, JobRecord, JobState
from .stats import FetchStats

__all__ = ["CacheConfig", "FetchStats", "JobKind", "JobRecord", "JobState"]
