"""
MyInstants Soundboard Bot - Main Entry Point
"""
import asyncio
import logging
import os
from datetime import datetime, UTC
from pathlib import Path

import discord
from discord.ext import commands

from soundboard.config import config

# Setup logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
logging.getLogger("discord.gateway").setLevel(logging.WARNING)
logger = logging.getLogger("bot")


class SoundBot(commands.Bot):
    """Discord soundboard bot for myinstants.com sounds."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.voice_states = True
        intents.guilds = True

        super().__init__(
            command_prefix="!",  # Fallback prefix, we use slash commands
            intents=intents,
            help_command=None,
        )

        # Will be initialized in setup_hook
        self.db = None
        self.sounds = None
        self.cache = None
        self.scraper = None
        self.fetcher = None
        self.voice = None
        self.transport = None
        self.playback = None
        self.start_time = datetime.now(UTC)
        self._purge_task: asyncio.Task | None = None

    async def setup_hook(self) -> None:
        """Called when the bot is starting up."""
        logger.info("Setting up bot...")

        # Database
        from soundboard.database.connection import DatabaseManager
        from soundboard.database.crud import SoundCRUD

        self.db = await DatabaseManager.create(config.DATABASE_PATH)
        self.sounds = SoundCRUD(self.db, max_sounds=config.MAX_SOUNDS_PER_GUILD)
        logger.info(f"Database initialized at {config.DATABASE_PATH}")

        # Initialize services
        from soundboard.services.cache import AudioCache
        from soundboard.services.fetcher import AudioFetcher
        from soundboard.services.playback import PlaybackCoordinator
        from soundboard.services.scraper import ScraperService
        from soundboard.voice.resource import purge_stale_resources
        from soundboard.voice.session import VoiceSession
        from soundboard.voice.transport import DiscordTransportAdapter

        self.cache = AudioCache(self.db, default_ttl=config.CACHE_TTL)
        self.scraper = ScraperService(timeout=config.DOWNLOAD_TIMEOUT)
        self.fetcher = AudioFetcher(self.cache, self.scraper)

        purge_stale_resources(config.TEMP_DIR)
        self.voice = VoiceSession(
            config.TEMP_DIR,
            idle_timeout=config.AUTO_DISCONNECT_DELAY,
            join_timeout=config.VOICE_JOIN_TIMEOUT,
            reconnect_timeout=config.VOICE_RECONNECT_TIMEOUT,
        )
        self.transport = DiscordTransportAdapter(connect_timeout=config.VOICE_JOIN_TIMEOUT)
        self.playback = PlaybackCoordinator(self.fetcher, self.voice, self.transport)

        logger.info("Services initialized")

        # Load all cogs from the cogs directory
        cogs_dir = Path(__file__).parent / "cogs"
        if cogs_dir.exists():
            for cog_file in cogs_dir.glob("*.py"):
                if cog_file.name.startswith("_"):
                    continue
                cog_name = f"soundboard.cogs.{cog_file.stem}"
                try:
                    await self.load_extension(cog_name)
                    logger.info(f"Loaded cog: {cog_name}")
                except Exception as e:
                    logger.error(f"Failed to load cog {cog_name}: {e}")

        # Sync slash commands
        logger.info("Syncing slash commands...")
        if config.GUILD_ID:
            guild = discord.Object(id=config.GUILD_ID)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info(f"Slash commands synced to guild {config.GUILD_ID}")
        else:
            await self.tree.sync()
            logger.info("Slash commands synced")

        self._purge_task = asyncio.create_task(self._purge_cache_loop(), name="cache-purge")

    async def _purge_cache_loop(self) -> None:
        """Periodically drop expired audio from the cache."""
        while True:
            await asyncio.sleep(config.CACHE_PURGE_INTERVAL)
            try:
                removed = await self.cache.purge_expired()
                if removed:
                    logger.info(f"Purged {removed} expired cached sound(s)")
            except Exception as e:
                logger.error(f"Cache purge failed: {e}")

    async def on_ready(self) -> None:
        """Called when the bot is fully ready."""
        logger.info(f"Logged in as {self.user} (ID: {self.user.id})")
        logger.info(f"Connected to {len(self.guilds)} guild(s)")

        if not getattr(discord.voice_client, "has_nacl", True):
            logger.warning("PyNaCl is not installed - voice playback will fail until it is")

        # Set presence
        activity = discord.Activity(
            type=discord.ActivityType.listening,
            name="/play"
        )
        await self.change_presence(activity=activity)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        logger.info(f"Joined guild: {guild.name} (ID: {guild.id})")

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        logger.info(f"Left guild: {guild.name} (ID: {guild.id})")
        if self.voice:
            await self.voice.disconnect(guild.id)

    async def close(self) -> None:
        """Cleanup when the bot is shutting down."""
        logger.info("Shutting down...")

        if self._purge_task:
            self._purge_task.cancel()

        # Leave every voice channel (stops FFmpeg)
        if self.voice:
            try:
                await self.voice.close()
            except Exception as e:
                logger.warning(f"Error closing voice sessions: {e}")

        # Let in-flight cache writes land before the database goes away
        if self.fetcher:
            await self.fetcher.wait_for_pending_writes()

        # Close database
        if self.db:
            try:
                await self.db.close()
            except Exception as e:
                logger.warning(f"Error closing database: {e}")

        await super().close()
        logger.info("Shutdown complete.")


async def main():
    """Main entry point."""
    if not config.DISCORD_TOKEN:
        logger.critical("DISCORD_TOKEN is not set")
        return

    bot = SoundBot()

    async with bot:
        try:
            await bot.start(config.DISCORD_TOKEN)
        except KeyboardInterrupt:
            logger.info("Shutdown initiated by user...")
        except Exception as e:
            logger.error(f"Bot error: {e}")
        finally:
            if not bot.is_closed():
                await bot.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        # standard exit
        os._exit(0)
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        os._exit(1)


if __name__ == "__main__":
    run()
