"""
CRUD helpers for guild sounds
"""
import logging

from soundboard.database.connection import DatabaseManager

logger = logging.getLogger(__name__)


class SoundCRUD:
    """Sounds saved per guild, most recent first and bounded to ``max_sounds``."""

    def __init__(self, db: DatabaseManager, max_sounds: int = 100):
        self.db = db
        self.max_sounds = max_sounds

    async def add(self, guild_id: int, sound_url: str, title: str, original_url: str) -> dict | None:
        """Save a sound for a guild. Returns None if the guild already has it."""
        if await self.is_duplicate(guild_id, sound_url):
            logger.info(f"Sound already exists for guild {guild_id}: {title}")
            return None

        # Evict until there is room for the new sound
        while await self.count(guild_id) >= self.max_sounds:
            if not await self.remove_oldest(guild_id):
                break

        cursor = await self.db.execute(
            """
            INSERT INTO guild_sounds (guild_id, sound_url, title, original_url)
            VALUES (?, ?, ?, ?)
            """,
            (str(guild_id), sound_url, title, original_url),
        )
        logger.info(f"Added sound to guild {guild_id}: {title}")
        return await self.get(guild_id, cursor.lastrowid)

    async def list(self, guild_id: int, limit: int | None = None) -> list[dict]:
        """Get sounds for a guild, most recent first."""
        return await self.db.fetch_all(
            """
            SELECT * FROM guild_sounds
            WHERE guild_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (str(guild_id), limit or self.max_sounds),
        )

    async def get(self, guild_id: int, sound_id: int) -> dict | None:
        return await self.db.fetch_one(
            "SELECT * FROM guild_sounds WHERE guild_id = ? AND id = ?",
            (str(guild_id), sound_id),
        )

    async def get_by_index(self, guild_id: int, index: int) -> dict | None:
        """Get a sound by its 0-based position in the dashboard listing."""
        if index < 0:
            return None
        sounds = await self.list(guild_id)
        return sounds[index] if index < len(sounds) else None

    async def remove(self, guild_id: int, sound_id: int) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM guild_sounds WHERE guild_id = ? AND id = ?",
            (str(guild_id), sound_id),
        )
        removed = cursor.rowcount > 0
        if removed:
            logger.info(f"Deleted sound {sound_id} from guild {guild_id}")
        return removed

    async def count(self, guild_id: int) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS total FROM guild_sounds WHERE guild_id = ?",
            (str(guild_id),),
        )
        return row["total"] if row else 0

    async def is_duplicate(self, guild_id: int, sound_url: str) -> bool:
        row = await self.db.fetch_one(
            "SELECT 1 FROM guild_sounds WHERE guild_id = ? AND sound_url = ?",
            (str(guild_id), sound_url),
        )
        return row is not None

    async def remove_oldest(self, guild_id: int) -> bool:
        """Remove the oldest sound of a guild."""
        oldest = await self.db.fetch_one(
            """
            SELECT id, title FROM guild_sounds
            WHERE guild_id = ?
            ORDER BY created_at ASC, id ASC
            LIMIT 1
            """,
            (str(guild_id),),
        )
        if not oldest:
            return False

        await self.db.execute("DELETE FROM guild_sounds WHERE id = ?", (oldest["id"],))
        logger.info(f"Removed oldest sound from guild {guild_id}: {oldest['title']}")
        return True
