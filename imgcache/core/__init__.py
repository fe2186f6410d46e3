"""
Core application engine for loading images.

The `FetchPipeline` coordinates the cache, the downloader and the codec for
every request and hands the decoded image to the caller's callback.
"""

from .fetch_pipeline import FetchHandle, FetchPipeline

__all__ = ["FetchHandle", "FetchPipeline"]
