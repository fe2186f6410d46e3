"""
Utilities for handling directories and output file names.
"""

import hashlib
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

from pathvalidate import sanitize_filename


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def output_filename(identifier: str, extension: str = "jpg") -> str:
    """
    Builds a safe local file name for a saved image from its URL.

    The last path segment of the URL is used when it yields a usable name;
    otherwise a short digest of the whole identifier is used.
    """
    segment = PurePosixPath(unquote(urlparse(identifier).path)).name
    stem = sanitize_filename(PurePosixPath(segment).stem)
    if not stem:
        stem = hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:16]
    return f"{stem}.{extension}"
