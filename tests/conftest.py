"""
Pytest configuration and fixtures for imgcache tests.
"""

import asyncio
import io

import pytest
from PIL import Image

from imgcache.exceptions import DownloadError


def make_image_bytes(size=(4, 3), color=(255, 0, 0), fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeDownloader:
    """Stands in for the network: serves canned payloads and records calls."""

    def __init__(self, payloads=None, gate: asyncio.Event | None = None, events=None):
        self.payloads = payloads or {}
        self.gate = gate
        self.events = events
        self.calls: list[str] = []

    async def download_bytes(self, url: str) -> bytes:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if url not in self.payloads:
            raise DownloadError(f"404 for {url}")
        if self.events is not None:
            self.events.append("download")
        return self.payloads[url]


@pytest.fixture
def cache_dir(tmp_path):
    """An existing, writable cache directory."""
    directory = tmp_path / "cache"
    directory.mkdir()
    return directory


@pytest.fixture
def png_bytes():
    return make_image_bytes()
