"""
Admin Cog - Audio cache management
"""
import logging

import discord
from discord import app_commands
from discord.ext import commands

logger = logging.getLogger(__name__)


def format_bytes(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


class AdminCog(commands.Cog):
    """Administrative commands for bot management."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    cache_group = app_commands.Group(
        name="cache",
        description="Audio cache management",
        default_permissions=discord.Permissions(administrator=True)
    )

    @cache_group.command(name="stats", description="Show audio cache and voice statistics")
    async def cache_stats(self, interaction: discord.Interaction):
        stats = await self.bot.cache.stats()

        embed = discord.Embed(title="🗄️ Audio Cache", color=discord.Color.blue())
        if not stats.get("connected"):
            embed.description = "❌ Cache is unavailable. Sounds will be downloaded on every play."
            embed.color = discord.Color.red()
        else:
            embed.add_field(name="Cached Sounds", value=str(stats["cached_sounds"]), inline=True)
            embed.add_field(name="Size", value=format_bytes(stats["total_bytes"]), inline=True)

        if interaction.guild_id:
            sound_count = await self.bot.sounds.count(interaction.guild_id)
            embed.add_field(name="Saved Sounds (this server)", value=str(sound_count), inline=True)
            in_voice = "Yes" if self.bot.voice.is_connected(interaction.guild_id) else "No"
            embed.add_field(name="In Voice", value=in_voice, inline=True)

        await interaction.response.send_message(embed=embed, ephemeral=True)

    @cache_group.command(name="purge", description="Remove expired sounds from the audio cache")
    async def cache_purge(self, interaction: discord.Interaction):
        removed = await self.bot.cache.purge_expired()
        logger.info(f"{interaction.user} purged {removed} expired cached sound(s)")
        await interaction.response.send_message(f"🧹 Removed {removed} expired sound(s) from the cache.", ephemeral=True)

    @cache_group.command(name="forget", description="Drop one sound from the audio cache")
    @app_commands.describe(number="The sound number (from /sounds command)")
    @app_commands.guild_only()
    async def cache_forget(self, interaction: discord.Interaction, number: app_commands.Range[int, 1, 100]):
        sound = await self.bot.sounds.get_by_index(interaction.guild_id, number - 1)
        if not sound:
            await interaction.response.send_message(f"❌ Sound #{number} not found!", ephemeral=True)
            return

        await self.bot.cache.invalidate(sound["sound_url"])
        await interaction.response.send_message(
            f"✅ **{sound['title']}** will be downloaded again next time it plays.", ephemeral=True
        )


async def setup(bot: commands.Bot):
    await bot.add_cog(AdminCog(bot))
