"""
Audio cache - downloaded sound buffers keyed by source URL
"""
import asyncio
import logging
import time
from datetime import timedelta
from typing import Callable

from soundboard.database.connection import DatabaseManager

logger = logging.getLogger(__name__)


class AudioCache:
    """
    Best-effort cache of audio bytes stored in SQLite.

    Every operation degrades to a miss or a no-op on failure: the cache
    must never be the reason a sound does not play.
    """

    DEFAULT_TTL = timedelta(days=7)
    KEY_PREFIX = "audio:"

    def __init__(
        self,
        db: DatabaseManager,
        default_ttl: timedelta = DEFAULT_TTL,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.default_ttl = default_ttl
        self.timeout = timeout
        self.clock = clock

    def _key(self, source_url: str) -> str:
        return f"{self.KEY_PREFIX}{source_url}"

    async def get(self, source_url: str) -> bytes | None:
        """Return cached bytes, or None if missing, expired or unreadable."""
        try:
            row = await asyncio.wait_for(
                self.db.fetch_one(
                    "SELECT data, expires_at FROM audio_cache WHERE key = ?",
                    (self._key(source_url),),
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Error reading from cache for {source_url}: {e}")
            return None

        if not row:
            logger.debug(f"Cache MISS for {source_url}")
            return None

        if row["expires_at"] <= self.clock():
            logger.debug(f"Cache EXPIRED for {source_url}")
            return None

        data = bytes(row["data"])
        logger.debug(f"Cache HIT for {source_url} ({len(data)} bytes)")
        return data

    async def put(self, source_url: str, data: bytes, ttl: timedelta | None = None) -> None:
        """Store bytes for a source URL, replacing any previous entry."""
        ttl = self.default_ttl if ttl is None else ttl
        expires_at = self.clock() + ttl.total_seconds()
        try:
            await asyncio.wait_for(
                self.db.execute(
                    "INSERT OR REPLACE INTO audio_cache (key, data, expires_at) VALUES (?, ?, ?)",
                    (self._key(source_url), data, expires_at),
                ),
                timeout=self.timeout,
            )
            logger.debug(f"Cached audio for {source_url} ({len(data)} bytes, ttl {int(ttl.total_seconds())}s)")
        except Exception as e:
            logger.error(f"Error writing to cache for {source_url}: {e}")

    async def invalidate(self, source_url: str) -> None:
        try:
            await asyncio.wait_for(
                self.db.execute("DELETE FROM audio_cache WHERE key = ?", (self._key(source_url),)),
                timeout=self.timeout,
            )
            logger.debug(f"Cleared cached audio for {source_url}")
        except Exception as e:
            logger.error(f"Error clearing cache for {source_url}: {e}")

    async def purge_expired(self) -> int:
        """Delete expired entries. Returns how many were removed."""
        try:
            cursor = await asyncio.wait_for(
                self.db.execute("DELETE FROM audio_cache WHERE expires_at <= ?", (self.clock(),)),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Error purging expired cache entries: {e}")
            return 0

        if cursor.rowcount:
            logger.info(f"Purged {cursor.rowcount} expired audio cache entries")
        return max(cursor.rowcount, 0)

    async def stats(self) -> dict:
        """Number of live entries and their total size."""
        try:
            row = await asyncio.wait_for(
                self.db.fetch_one(
                    """
                    SELECT COUNT(*) AS cached_sounds, COALESCE(SUM(LENGTH(data)), 0) AS total_bytes
                    FROM audio_cache WHERE expires_at > ?
                    """,
                    (self.clock(),),
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Error getting cache stats: {e}")
            return {"connected": False}

        return {
            "connected": True,
            "cached_sounds": row["cached_sounds"] if row else 0,
            "total_bytes": row["total_bytes"] if row else 0,
        }
