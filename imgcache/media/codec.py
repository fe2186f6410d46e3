"""
Decodes raw bytes into Pillow images and encodes images back into the cache's
storage format.
"""

import io
import logging

from PIL import Image, UnidentifiedImageError

from imgcache.exceptions import DecodeError

log = logging.getLogger(__name__)


class ImageCodec:
    """Converts between encoded image bytes and decoded Pillow images."""

    CACHE_FORMAT = "JPEG"
    CACHE_QUALITY = 100

    @staticmethod
    def decode(data: bytes) -> Image.Image:
        """
        Decodes and fully loads an image.

        Raises:
            DecodeError: If the bytes are empty or not a readable image.
        """
        if not data:
            raise DecodeError("No image data to decode.")
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
            return image
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise DecodeError(f"Could not decode image: {e}") from e

    @classmethod
    def encode(cls, image: Image.Image) -> bytes:
        """
        Encodes an image as a maximum-quality JPEG.

        Images with transparency or palettes are flattened to RGB first.
        """
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buffer = io.BytesIO()
        try:
            image.save(buffer, format=cls.CACHE_FORMAT, quality=cls.CACHE_QUALITY)
        except (OSError, ValueError) as e:
            raise DecodeError(f"Could not encode image: {e}") from e
        return buffer.getvalue()
