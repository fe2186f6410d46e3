"""
Empties a cache directory on behalf of a cleanup job.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from imgcache.exceptions import PurgeError
from imgcache.models.job import decode_payload, encode_payload

log = logging.getLogger(__name__)


@dataclass
class PurgeResult:
    """Aggregate outcome of one purge run."""

    success: bool
    removed: int = 0
    failed: list[str] = field(default_factory=list)
    error: str | None = None


def _check_directory(directory: Path) -> None:
    if not directory.is_dir():
        raise PurgeError(f"'{directory}' is not a directory.")
    if not os.access(directory, os.W_OK | os.X_OK):
        raise PurgeError(f"'{directory}' is not writable.")


class PurgeWorker:
    """
    Deletes every immediate entry of a directory, descending into sub-trees.

    The purge is not transactional: when one entry cannot be removed the run is
    reported as failed, but whatever was already deleted stays deleted.
    """

    def __init__(self, payload: str):
        self.payload = payload

    @staticmethod
    def create_payload(directory: Path) -> str:
        """
        Validates a directory at scheduling time and serializes it as a job payload.

        Raises:
            PurgeError: If the directory is missing, not a directory or not writable.
        """
        directory = Path(directory)
        _check_directory(directory)
        return encode_payload(str(directory.resolve()))

    def _resolve_directory(self) -> Path:
        directory = decode_payload(self.payload)
        if directory is None:
            raise PurgeError(f"Malformed purge payload: {self.payload!r}")
        path = Path(directory)
        if not path.is_absolute():
            raise PurgeError(f"Purge directory '{directory}' is not absolute.")
        _check_directory(path)
        return path

    @staticmethod
    def _remove_file(path: str) -> None:
        os.unlink(path)

    @classmethod
    def _delete_tree(cls, path: str, failed: list[str]) -> None:
        """
        Deletes a sub-tree bottom-up. An entry that cannot be removed is recorded
        in `failed` and the walk carries on with its siblings.
        """
        failures_before = len(failed)
        try:
            with os.scandir(path) as it:
                children = list(it)
        except OSError as e:
            log.warning(f"Could not list '{path}': {e}")
            failed.append(path)
            return

        for child in children:
            if child.is_dir(follow_symlinks=False):
                cls._delete_tree(child.path, failed)
                continue
            try:
                cls._remove_file(child.path)
            except OSError as e:
                log.warning(f"Failed to remove '{child.path}': {e}")
                failed.append(child.path)

        if len(failed) > failures_before:
            return  # not empty, the leftovers are already reported
        try:
            os.rmdir(path)
        except OSError as e:
            log.warning(f"Failed to remove '{path}': {e}")
            failed.append(path)

    @classmethod
    def _delete_entry(cls, entry: os.DirEntry) -> list[str]:
        """Removes one top-level entry and returns the paths left behind."""
        failed: list[str] = []
        if entry.is_dir(follow_symlinks=False):
            cls._delete_tree(entry.path, failed)
            return failed
        try:
            cls._remove_file(entry.path)
        except OSError as e:
            log.warning(f"Failed to remove '{entry.path}': {e}")
            failed.append(entry.path)
        return failed

    def run(self) -> PurgeResult:
        """Runs the purge. Never raises; problems are reported in the result."""
        try:
            directory = self._resolve_directory()
        except PurgeError as e:
            log.warning(f"Purge aborted: {e}")
            return PurgeResult(success=False, error=str(e))

        removed = 0
        failed: list[str] = []
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            log.warning(f"Could not list '{directory}': {e}")
            return PurgeResult(success=False, error=str(e))

        incomplete = 0
        for entry in entries:
            leftovers = self._delete_entry(entry)
            if leftovers:
                incomplete += 1
                failed.extend(leftovers)
            else:
                removed += 1

        if failed:
            return PurgeResult(
                success=False,
                removed=removed,
                failed=failed,
                error=(
                    f"{incomplete} of {len(entries)} entries could not be fully"
                    " removed"
                ),
            )

        log.debug(f"Purged {removed} entries from '{directory}'.")
        return PurgeResult(success=True, removed=removed)
