"""
Configuration - Environment-driven settings
"""
import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    """Bot configuration loaded from the environment (and .env if present)."""

    def __init__(self):
        # Discord
        self.DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
        guild_id = os.getenv("GUILD_ID")
        self.GUILD_ID = int(guild_id) if guild_id and guild_id.isdigit() else None

        # Storage
        self.DATABASE_PATH = Path(os.getenv("DATABASE_PATH", "data/soundboard.db"))
        self.TEMP_DIR = Path(os.getenv("TEMP_DIR", "temp"))

        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        # Bot behaviour
        self.MAX_SOUNDS_PER_GUILD = _int("MAX_SOUNDS_PER_GUILD", 100)
        self.AUTO_DISCONNECT_DELAY = _int("AUTO_DISCONNECT_DELAY", 15 * 60)  # seconds
        self.VOICE_JOIN_TIMEOUT = _int("VOICE_JOIN_TIMEOUT", 30)
        self.VOICE_RECONNECT_TIMEOUT = _int("VOICE_RECONNECT_TIMEOUT", 5)

        # Audio cache
        self.CACHE_TTL = timedelta(seconds=_int("CACHE_TTL", 7 * 24 * 60 * 60))
        self.CACHE_PURGE_INTERVAL = _int("CACHE_PURGE_INTERVAL", 60 * 60)

        # Network
        self.DOWNLOAD_TIMEOUT = _int("DOWNLOAD_TIMEOUT", 15)


config = Config()
