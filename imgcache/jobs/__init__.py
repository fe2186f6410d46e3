"""
Background Jobs Layer.

This package schedules and executes the purges that reclaim cache space,
either on a recurring schedule or on demand.
"""

from .purge_worker import PurgeResult, PurgeWorker
from .scheduler import MIN_PERIODIC_INTERVAL, CleanupScheduler

__all__ = ["CleanupScheduler", "MIN_PERIODIC_INTERVAL", "PurgeResult", "PurgeWorker"]
