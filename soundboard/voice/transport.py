"""
Voice transport - connection/player state machine and the discord.py adapter
"""
import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Callable

import discord

from soundboard.errors import FailureCause, PlaybackError, classify_failure

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    SIGNALLING = "signalling"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


class PlayerStatus(Enum):
    IDLE = "idle"
    BUFFERING = "buffering"
    PLAYING = "playing"
    PAUSED = "paused"
    AUTO_PAUSED = "autopaused"


class VoiceConnection:
    """
    A voice connection for one guild.

    Tracks the connection status and lets callers wait for a status to be
    entered. DESTROYED is terminal. Subclasses provide the actual transport.
    """

    def __init__(self, guild_id: int):
        self.guild_id = guild_id
        self.failure_cause = FailureCause.UNKNOWN
        self._status = ConnectionStatus.SIGNALLING
        self._waiters: list[tuple[frozenset, asyncio.Future]] = []
        self.on_destroyed: Callable[["VoiceConnection"], None] | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status or self._status is ConnectionStatus.DESTROYED:
            return

        logger.debug(f"Voice connection for guild {self.guild_id}: {self._status.value} -> {status.value}")
        self._status = status
        for wanted, future in self._waiters:
            if status in wanted and not future.done():
                future.set_result(status)
        if status is ConnectionStatus.DESTROYED and self.on_destroyed is not None:
            self.on_destroyed(self)

    async def wait_for(self, *statuses: ConnectionStatus, timeout: float | None = None) -> ConnectionStatus:
        """Wait until the connection enters one of ``statuses``. Raises asyncio.TimeoutError."""
        if self._status in statuses:
            return self._status

        future = asyncio.get_running_loop().create_future()
        waiter = (frozenset(statuses), future)
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._waiters.remove(waiter)

    def create_player(self) -> "AudioPlayer":
        raise NotImplementedError

    async def destroy(self) -> None:
        raise NotImplementedError


class AudioPlayer:
    """Streams one audio file at a time into a connection."""

    @property
    def status(self) -> PlayerStatus:
        raise NotImplementedError

    def play(self, path: Path) -> asyncio.Future:
        """Start playing ``path``, pre-empting whatever is playing.

        The returned future resolves when the file is exhausted or playback
        is stopped, and fails with PlaybackError on a player error.
        """
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


# ==================== DISCORD ====================


class DiscordAudioPlayer(AudioPlayer):
    """Audio player backed by a discord.py VoiceClient."""

    FFMPEG_OPTIONS = {
        "before_options": "-nostdin",
        "options": "-vn",
    }

    def __init__(self, connection: "DiscordVoiceConnection"):
        self.connection = connection

    @property
    def status(self) -> PlayerStatus:
        vc = self.connection.voice_client
        if vc is None:
            return PlayerStatus.IDLE
        if vc.is_playing():
            return PlayerStatus.PLAYING
        if vc.is_paused():
            return PlayerStatus.PAUSED
        return PlayerStatus.IDLE

    def play(self, path: Path) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        finished = loop.create_future()
        vc = self.connection.voice_client

        if vc is None or not vc.is_connected():
            finished.set_exception(PlaybackError("Voice connection is not ready"))
            return finished

        def _settle(error: Exception | None) -> None:
            if finished.done():
                return
            if error:
                finished.set_exception(PlaybackError(f"Audio player error: {error}", cause=classify_failure(error)))
            else:
                finished.set_result(None)

        def after_play(error: Exception | None) -> None:
            # Runs on the player thread
            loop.call_soon_threadsafe(_settle, error)

        try:
            if vc.is_playing() or vc.is_paused():
                vc.stop()
            source = discord.FFmpegOpusAudio(str(path), **self.FFMPEG_OPTIONS)
            vc.play(source, after=after_play)
        except Exception as e:
            finished.set_exception(PlaybackError(f"Failed to start playback: {e}", cause=classify_failure(e)))
        return finished

    def stop(self) -> None:
        vc = self.connection.voice_client
        if vc and (vc.is_playing() or vc.is_paused()):
            vc.stop()


class DiscordVoiceConnection(VoiceConnection):
    """Voice connection that drives a discord.py VoiceClient through the status machine."""

    def __init__(self, channel: discord.VoiceChannel, connect_timeout: float = 30.0):
        super().__init__(channel.guild.id)
        self.channel = channel
        self.connect_timeout = connect_timeout
        self.voice_client: discord.VoiceClient | None = None
        self._connect_task: asyncio.Task | None = None

    def open(self) -> None:
        self._connect_task = asyncio.create_task(self._connect(), name=f"voice-connect:{self.guild_id}")

    async def _connect(self) -> None:
        self._set_status(ConnectionStatus.CONNECTING)

        if not getattr(discord.voice_client, "has_nacl", True):
            logger.error("PyNaCl is not installed, voice encryption is unavailable")
            self.failure_cause = FailureCause.ENCRYPTION
            self._set_status(ConnectionStatus.DESTROYED)
            return

        try:
            existing = self.channel.guild.voice_client
            if isinstance(existing, discord.VoiceClient) and existing.is_connected():
                await existing.move_to(self.channel)
                self.voice_client = existing
            else:
                self.voice_client = await self.channel.connect(
                    timeout=self.connect_timeout, reconnect=True, self_deaf=True
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to join {self.channel} in guild {self.guild_id}: {e!r}")
            self.failure_cause = classify_failure(e)
            self._set_status(ConnectionStatus.DESTROYED)
            return

        logger.info(f"Connected to {self.channel.name} in guild {self.guild_id}")
        self._set_status(ConnectionStatus.READY)

    def handle_voice_state(self, before: discord.VoiceState, after: discord.VoiceState) -> None:
        """Feed the bot's own voice state updates into the status machine."""
        if after.channel is None:
            self._set_status(ConnectionStatus.DISCONNECTED)
        elif self.status is ConnectionStatus.DISCONNECTED:
            self._set_status(ConnectionStatus.SIGNALLING)
            if self.voice_client and self.voice_client.is_connected():
                self._set_status(ConnectionStatus.READY)

    def create_player(self) -> DiscordAudioPlayer:
        return DiscordAudioPlayer(self)

    async def destroy(self) -> None:
        if self.status is ConnectionStatus.DESTROYED and self.voice_client is None:
            return

        if self._connect_task and not self._connect_task.done():
            self._connect_task.cancel()

        vc, self.voice_client = self.voice_client, None
        self._set_status(ConnectionStatus.DESTROYED)
        if vc is not None:
            try:
                if vc.is_playing() or vc.is_paused():
                    vc.stop()
                await vc.disconnect(force=True)
            except Exception as e:
                logger.warning(f"Error disconnecting voice client in guild {self.guild_id}: {e}")


class DiscordTransportAdapter:
    """Creates discord.py voice connections and routes voice state updates to them."""

    def __init__(self, connect_timeout: float = 30.0):
        self.connect_timeout = connect_timeout
        self._connections: dict[int, DiscordVoiceConnection] = {}

    def join(self, channel: discord.VoiceChannel, guild_id: int) -> DiscordVoiceConnection:
        connection = DiscordVoiceConnection(channel, connect_timeout=self.connect_timeout)
        connection.on_destroyed = self._release
        self._connections[guild_id] = connection
        connection.open()
        return connection

    def handle_voice_state(self, guild_id: int, before: discord.VoiceState, after: discord.VoiceState) -> None:
        connection = self._connections.get(guild_id)
        if connection is None:
            return
        connection.handle_voice_state(before, after)

    def _release(self, connection: VoiceConnection) -> None:
        if self._connections.get(connection.guild_id) is connection:
            del self._connections[connection.guild_id]
