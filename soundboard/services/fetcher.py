"""
Audio fetcher - cache-through retrieval of sound bytes
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from soundboard.errors import DownloadError, FetchError
from soundboard.services.cache import AudioCache

logger = logging.getLogger(__name__)


class Downloader(Protocol):
    async def download(self, source_url: str) -> bytes: ...


class Provenance(str, Enum):
    """Where the audio bytes came from."""
    CACHE = "cache"
    NETWORK = "network"


@dataclass
class FetchResult:
    data: bytes
    provenance: Provenance


class AudioFetcher:
    """Returns audio bytes from the cache, downloading and caching on a miss."""

    def __init__(self, cache: AudioCache, downloader: Downloader):
        self.cache = cache
        self.downloader = downloader
        self._pending_writes: set[asyncio.Task] = set()

    async def fetch(self, source_url: str) -> FetchResult:
        """Get audio bytes for a source URL. Raises FetchError if the download fails."""
        try:
            cached = await self.cache.get(source_url)
        except Exception as e:
            logger.error(f"Cache lookup failed for {source_url}, treating as miss: {e}")
            cached = None

        if cached is not None:
            logger.info(f"Retrieved sound from cache: {source_url} ({len(cached)} bytes)")
            return FetchResult(cached, Provenance.CACHE)

        try:
            data = await self.downloader.download(source_url)
        except DownloadError as e:
            raise FetchError(str(e), cause=e.cause) from e
        except Exception as e:
            raise FetchError(f"Failed to download sound: {e}") from e

        logger.info(f"Downloaded sound (cache miss): {source_url} ({len(data)} bytes)")
        self._spawn_cache_write(source_url, data)
        return FetchResult(data, Provenance.NETWORK)

    def _spawn_cache_write(self, source_url: str, data: bytes) -> None:
        """Cache the bytes in the background without holding up the caller."""
        task = asyncio.create_task(self.cache.put(source_url, data), name=f"cache-put:{source_url}")
        self._pending_writes.add(task)

        def _discard_and_log(t: asyncio.Task) -> None:
            self._pending_writes.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc:
                logger.error(f"Failed to cache audio (non-critical) for {source_url}: {exc}")

        task.add_done_callback(_discard_and_log)

    async def wait_for_pending_writes(self) -> None:
        """Wait for background cache writes to settle."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)
