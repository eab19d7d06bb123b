"""
Sounds Cog - Play, stop, browse and delete guild sounds
"""
import asyncio
import logging
import math
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from soundboard.errors import ErrorKind, FailureCause, ScrapeError, SoundboardError
from soundboard.services.fetcher import Provenance
from soundboard.services.playback import PlaybackOutcome, PlaybackRequest
from soundboard.services.scraper import clean_title, is_myinstants_url

logger = logging.getLogger(__name__)

SOUNDS_PER_PAGE = 20
STATUS_DELETE_DELAY = 3  # seconds after playback starts

FAILURE_HINTS = {
    FailureCause.ENCRYPTION: "💡 **Encryption Error**: The bot is missing the voice encryption library (PyNaCl).",
    FailureCause.CONNECT_PERMISSION: "💡 Make sure I have **Connect** and **Speak** permissions in your voice channel.",
    FailureCause.FILE_PERMISSION: "💡 **Permission Error**: The bot cannot write temporary files.",
}


def failure_message(error: SoundboardError) -> str:
    """User-facing message for a failed request, with a hint when the cause is known."""
    prefix = {
        ErrorKind.SCRAPE: "Failed to scrape sound",
        ErrorKind.DOWNLOAD: "Failed to download sound",
        ErrorKind.FETCH: "Failed to get sound",
        ErrorKind.VOICE_JOIN_TIMEOUT: "Failed to join voice channel",
        ErrorKind.PLAYBACK: "Failed to play audio",
    }.get(error.kind)
    message = f"❌ {prefix}: {error}" if prefix else f"❌ {error}"

    hint = FAILURE_HINTS.get(error.cause)
    if hint is None and error.kind is ErrorKind.VOICE_JOIN_TIMEOUT:
        hint = FAILURE_HINTS[FailureCause.CONNECT_PERMISSION]
    if hint:
        message += f"\n\n{hint}"
    return message


class SoundButton(discord.ui.Button):
    """Plays one saved sound, or asks to delete it on a delete dashboard."""

    def __init__(self, sound: dict, number: int, row: int, mode: str = "play"):
        label = f"{number}. {clean_title(sound['title'])}"
        style = discord.ButtonStyle.danger if mode == "delete" else discord.ButtonStyle.secondary
        super().__init__(label=label[:80], style=style, row=row)
        self.sound_id = sound["id"]
        self.mode = mode

    async def callback(self, interaction: discord.Interaction):
        if self.mode == "delete":
            await self.view.cog.confirm_delete(interaction, self.sound_id)
        else:
            await self.view.cog.play_saved_sound(interaction, self.sound_id)


class SoundBoardView(discord.ui.View):
    """Paginated dashboard of a guild's sounds."""

    def __init__(self, cog: "SoundsCog", guild_id: int, sounds: list[dict], page: int = 0, mode: str = "play"):
        super().__init__(timeout=600)
        self.cog = cog
        self.guild_id = guild_id
        self.mode = mode
        self.message: discord.Message | None = None
        self.render(sounds, page)

    def render(self, sounds: list[dict], page: int | None = None) -> None:
        """Rebuild the sound buttons for ``sounds``, keeping the current page where possible."""
        self.sounds = sounds
        self.page_count = max(1, math.ceil(len(sounds) / SOUNDS_PER_PAGE))
        page = self.page if page is None else page
        self.page = min(max(page, 0), self.page_count - 1)

        for item in [child for child in self.children if isinstance(child, SoundButton)]:
            self.remove_item(item)

        start = self.page * SOUNDS_PER_PAGE
        for offset, sound in enumerate(sounds[start:start + SOUNDS_PER_PAGE]):
            self.add_item(SoundButton(sound, start + offset + 1, row=offset // 5, mode=self.mode))

        self.previous_page.disabled = self.page == 0
        self.next_page.disabled = self.page >= self.page_count - 1

    def build_embed(self) -> discord.Embed:
        if self.mode == "delete":
            embed = discord.Embed(title="🗑️ Delete Sound", color=discord.Color.red())
        else:
            embed = discord.Embed(title="🔊 Sound Board", color=discord.Color.blurple())

        if not self.sounds:
            action = "delete" if self.mode == "delete" else "show"
            embed.description = f"No sounds to {action} yet. Use `/play` with a myinstants.com URL to add one!"
        else:
            action = "delete" if self.mode == "delete" else "play"
            embed.description = f"Click a button to {action} a sound."
            embed.set_footer(text=f"Page {self.page + 1}/{self.page_count} • {len(self.sounds)} sound(s)")
        return embed

    @discord.ui.button(emoji="◀️", style=discord.ButtonStyle.primary, row=4)
    async def previous_page(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.render(self.sounds, self.page - 1)
        await interaction.response.edit_message(embed=self.build_embed(), view=self)

    @discord.ui.button(emoji="▶️", style=discord.ButtonStyle.primary, row=4)
    async def next_page(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.render(self.sounds, self.page + 1)
        await interaction.response.edit_message(embed=self.build_embed(), view=self)

    async def on_timeout(self) -> None:
        self.cog.dashboards.untrack(self.guild_id, self)


class DashboardRegistry:
    """
    Dashboards currently on screen, per guild.

    Adding or deleting a sound re-renders every tracked dashboard of that
    guild so numbering and buttons stay in step with the database.
    """

    MAX_PER_GUILD = 10

    def __init__(self, max_per_guild: int = MAX_PER_GUILD):
        self.max_per_guild = max_per_guild
        self._views: dict[int, list[SoundBoardView]] = {}

    def views(self, guild_id: int) -> list[SoundBoardView]:
        return list(self._views.get(guild_id, []))

    def track(self, guild_id: int, view: SoundBoardView) -> None:
        views = self._views.setdefault(guild_id, [])
        if view in views:
            views.remove(view)
        views.append(view)

        # Oldest dashboards stop updating once the guild has too many
        while len(views) > self.max_per_guild:
            views.pop(0).stop()
        logger.debug(f"Tracking {len(views)} dashboard(s) in guild {guild_id}")

    def untrack(self, guild_id: int, view: SoundBoardView) -> None:
        views = self._views.get(guild_id)
        if not views or view not in views:
            return
        views.remove(view)
        if not views:
            del self._views[guild_id]

    async def refresh(self, guild_id: int, sounds: list[dict]) -> None:
        """Re-render every tracked dashboard of a guild with ``sounds``."""
        views = self.views(guild_id)
        if not views:
            return

        logger.info(f"Refreshing {len(views)} dashboard(s) in guild {guild_id}")
        for view in views:
            if view.message is None:
                continue
            view.render(sounds)
            try:
                await view.message.edit(embed=view.build_embed(), view=view)
            except (discord.NotFound, discord.Forbidden) as e:
                logger.debug(f"Dashboard in guild {guild_id} is no longer accessible: {e}")
                self.untrack(guild_id, view)
                view.stop()
            except discord.HTTPException as e:
                logger.warning(f"Failed to refresh dashboard in guild {guild_id}: {e}")


class DeleteConfirmView(discord.ui.View):
    """Yes/No confirmation before a sound is removed."""

    def __init__(self, cog: "SoundsCog", sound: dict):
        super().__init__(timeout=60)
        self.cog = cog
        self.sound = sound

    @discord.ui.button(label="Yes, Delete", emoji="✅", style=discord.ButtonStyle.danger)
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button):
        title = clean_title(self.sound["title"])
        try:
            removed = await self.cog.sounds.remove(interaction.guild_id, self.sound["id"])
        except Exception as e:
            logger.error(f"Failed to delete sound {self.sound['id']} in guild {interaction.guild_id}: {e}")
            await interaction.response.edit_message(content=f"❌ An error occurred: {e}", view=None)
            return

        if removed:
            content = f"✅ Successfully deleted: **{title}**"
        else:
            content = "❌ Sound not found! It may have already been deleted."
        await interaction.response.edit_message(content=content, view=None)
        self.stop()

        if removed:
            await self.cog.refresh_dashboards(interaction.guild_id)

    @discord.ui.button(label="No, Cancel", emoji="❌", style=discord.ButtonStyle.secondary)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button):
        await interaction.response.edit_message(content="✅ Deletion cancelled. Sound was not deleted.", view=None)
        self.stop()


class SoundsCog(commands.Cog):
    """Soundboard commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.dashboards = DashboardRegistry()
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def sounds(self):
        return self.bot.sounds

    # ==================== HELPERS ====================

    async def _voice_channel_for(self, interaction: discord.Interaction) -> discord.VoiceChannel | None:
        """Return the caller's voice channel, or reply with why it can't be used."""
        voice = getattr(interaction.user, "voice", None)
        if not voice or not voice.channel:
            await interaction.response.send_message("❌ You need to be in a voice channel first!", ephemeral=True)
            return None

        permissions = voice.channel.permissions_for(interaction.guild.me)
        if not permissions.connect or not permissions.speak:
            await interaction.response.send_message(
                "❌ I need permissions to join and speak in your voice channel!", ephemeral=True
            )
            return None

        return voice.channel

    async def _play(
        self,
        interaction: discord.Interaction,
        voice_channel: discord.VoiceChannel,
        source_url: str,
        title: str,
    ) -> PlaybackOutcome:
        """Play through the coordinator, keeping the deferred response up to date."""
        display_title = clean_title(title)

        async def on_playing(provenance: Provenance) -> None:
            origin = "from cache" if provenance is Provenance.CACHE else "downloaded"
            await interaction.edit_original_response(content=f"🔊 Playing: **{display_title}** *({origin})*")
            self._spawn(self._delete_response_later(interaction))

        request = PlaybackRequest(
            guild_id=interaction.guild_id,
            voice_channel=voice_channel,
            source_url=source_url,
            display_title=display_title,
        )
        outcome = await self.bot.playback.execute(request, on_playing=on_playing)
        if not outcome.ok:
            try:
                await interaction.edit_original_response(content=failure_message(outcome.error))
            except discord.HTTPException as e:
                logger.debug(f"Could not report playback failure: {e}")
        return outcome

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _delete_response_later(self, interaction: discord.Interaction) -> None:
        await asyncio.sleep(STATUS_DELETE_DELAY)
        try:
            await interaction.delete_original_response()
        except discord.HTTPException:
            pass

    async def play_saved_sound(self, interaction: discord.Interaction, sound_id: int) -> None:
        """Play a sound from the guild's dashboard."""
        voice_channel = await self._voice_channel_for(interaction)
        if not voice_channel:
            return

        await interaction.response.defer(ephemeral=True, thinking=True)

        sound = await self.sounds.get(interaction.guild_id, sound_id)
        if not sound:
            await interaction.edit_original_response(content="❌ This sound is no longer available!")
            return

        logger.info(f"Sound {sound_id} selected by {interaction.user} in guild {interaction.guild_id}")
        await self._play(interaction, voice_channel, sound["sound_url"], sound["title"])

    async def confirm_delete(self, interaction: discord.Interaction, sound_id: int) -> None:
        """Ask for confirmation before deleting a sound picked on a delete dashboard."""
        sound = await self.sounds.get(interaction.guild_id, sound_id)
        if not sound:
            await interaction.response.send_message("❌ This sound is no longer available!", ephemeral=True)
            return
        await self._send_delete_confirmation(interaction, sound)

    async def _send_delete_confirmation(self, interaction: discord.Interaction, sound: dict) -> None:
        await interaction.response.send_message(
            f"⚠️ Are you sure you want to delete this sound?\n\n"
            f"**{clean_title(sound['title'])}**\n\nThis action cannot be undone!",
            view=DeleteConfirmView(self, sound),
            ephemeral=True,
        )

    async def refresh_dashboards(self, guild_id: int) -> None:
        """Re-render the guild's open dashboards after its sounds changed."""
        if not self.dashboards.views(guild_id):
            return
        try:
            sounds = await self.sounds.list(guild_id)
        except Exception as e:
            logger.error(f"Failed to load sounds for dashboard refresh in guild {guild_id}: {e}")
            return
        await self.dashboards.refresh(guild_id, sounds)

    async def _show_dashboard(self, interaction: discord.Interaction, mode: str) -> None:
        try:
            sounds = await self.sounds.list(interaction.guild_id)
        except Exception as e:
            logger.error(f"Failed to load sounds for guild {interaction.guild_id}: {e}")
            await interaction.response.send_message("❌ Failed to show sounds dashboard!", ephemeral=True)
            return

        view = SoundBoardView(self, interaction.guild_id, sounds, mode=mode)
        await interaction.response.send_message(embed=view.build_embed(), view=view, ephemeral=mode == "delete")
        view.message = await interaction.original_response()
        self.dashboards.track(interaction.guild_id, view)
        logger.info(f"Dashboard ({mode}) shown in guild {interaction.guild_id} with {len(sounds)} sound(s)")

    # ==================== COMMANDS ====================

    @app_commands.command(name="play", description="Play a sound from myinstants.com")
    @app_commands.describe(url="The myinstants.com URL")
    @app_commands.guild_only()
    async def play(self, interaction: discord.Interaction, url: str):
        """Scrape, save and play a MyInstants sound."""
        logger.info(f"/play by {interaction.user} in guild {interaction.guild_id}: {url}")

        if not is_myinstants_url(url):
            await interaction.response.send_message("❌ Please provide a valid myinstants.com URL!", ephemeral=True)
            return

        voice_channel = await self._voice_channel_for(interaction)
        if not voice_channel:
            return

        await interaction.response.defer(thinking=True)

        try:
            scraped = await self.bot.scraper.scrape(url)
        except ScrapeError as e:
            await interaction.edit_original_response(content=failure_message(e))
            return

        title = clean_title(scraped.title)
        is_duplicate = False
        saved = None
        try:
            is_duplicate = await self.sounds.is_duplicate(interaction.guild_id, scraped.source_url)
            if not is_duplicate:
                saved = await self.sounds.add(interaction.guild_id, scraped.source_url, scraped.title, url)
        except Exception as e:
            logger.error(f"Failed to save sound to database for guild {interaction.guild_id}: {e}")
        if saved:
            await self.refresh_dashboards(interaction.guild_id)

        if is_duplicate:
            status = f"⚠️ **{title}** is already in this guild's sounds! Playing anyway..."
        else:
            status = f"🎵 Found: **{title}**\n⬇️ Downloading..."
        await interaction.edit_original_response(content=status)

        await self._play(interaction, voice_channel, scraped.source_url, scraped.title)

    @app_commands.command(name="stop", description="Stop playing and leave the voice channel")
    @app_commands.guild_only()
    async def stop(self, interaction: discord.Interaction):
        was_connected = await self.bot.voice.disconnect(interaction.guild_id)
        if not was_connected:
            await interaction.response.send_message("❌ I'm not playing anything right now!", ephemeral=True)
            return

        logger.info(f"Stopped playback in guild {interaction.guild_id}")
        await interaction.response.send_message("⏹️ Stopped playing and left the voice channel.", ephemeral=True)

    @app_commands.command(name="sounds", description="Show dashboard of saved sounds for this guild")
    @app_commands.guild_only()
    async def sounds_dashboard(self, interaction: discord.Interaction):
        await self._show_dashboard(interaction, mode="play")

    @app_commands.command(name="delete", description="Delete a sound from this guild")
    @app_commands.describe(number="The sound number (from /sounds command); leave empty to pick from a list")
    @app_commands.guild_only()
    async def delete(self, interaction: discord.Interaction, number: Optional[app_commands.Range[int, 1, 100]] = None):
        if number is None:
            await self._show_dashboard(interaction, mode="delete")
            return

        sound = await self.sounds.get_by_index(interaction.guild_id, number - 1)
        if not sound:
            await interaction.response.send_message(
                f"❌ Sound #{number} not found! Use `/sounds` to see available sounds.", ephemeral=True
            )
            return

        await self._send_delete_confirmation(interaction, sound)

    # ==================== EVENTS ====================

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """Track the bot's own voice connection state."""
        if self.bot.user is None or member.id != self.bot.user.id:
            return
        self.bot.transport.handle_voice_state(member.guild.id, before, after)

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        logger.error(f"Error in /{interaction.command.name if interaction.command else '?'}: {error}")
        content = f"❌ An error occurred: {getattr(error, 'original', error)}"
        try:
            if interaction.response.is_done():
                await interaction.edit_original_response(content=content)
            else:
                await interaction.response.send_message(content, ephemeral=True)
        except discord.HTTPException:
            pass


async def setup(bot: commands.Bot):
    """Load the sounds cog."""
    await bot.add_cog(SoundsCog(bot))
