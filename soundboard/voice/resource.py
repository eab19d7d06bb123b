"""
Temporary audio files handed to the voice player
"""
import asyncio
import itertools
import logging
import time
from functools import partial
from pathlib import Path

logger = logging.getLogger(__name__)

_sequence = itertools.count()


class TemporaryAudioResource:
    """
    A short-lived audio file owned by a single playback.

    Names are time based (plus a process-wide sequence number) so two
    playbacks never share a file. ``delete()`` is idempotent; using the
    resource as an async context manager deletes it on every exit path.
    """

    PREFIX = "temp_"

    def __init__(self, directory: Path, suffix: str = ".mp3"):
        self.directory = directory
        self.path = directory / f"{self.PREFIX}{time.time_ns()}_{next(_sequence)}{suffix}"
        self.deleted = False

    async def write(self, data: bytes) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_sync, data)

    def _write_sync(self, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(data)

    async def delete(self) -> bool:
        """Remove the file. Returns False if it was already deleted."""
        if self.deleted:
            return False
        self.deleted = True

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, partial(self.path.unlink, missing_ok=True))
        except OSError as e:
            logger.warning(f"Failed to delete temporary audio file {self.path}: {e}")
        return True

    async def __aenter__(self) -> "TemporaryAudioResource":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.delete()


def purge_stale_resources(directory: Path) -> int:
    """Delete temporary audio files left behind by a previous run."""
    if not directory.exists():
        return 0

    removed = 0
    for path in directory.glob(f"{TemporaryAudioResource.PREFIX}*"):
        try:
            path.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Could not remove stale temporary file {path}: {e}")

    if removed:
        logger.info(f"Removed {removed} stale temporary audio file(s) from {directory}")
    return removed
