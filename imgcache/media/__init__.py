"""
Media Processing Layer.

This package is responsible for downloading remote images and converting
between encoded bytes and decoded images.
"""

from .codec import ImageCodec
from .downloader import Downloader

__all__ = ["Downloader", "ImageCodec"]
