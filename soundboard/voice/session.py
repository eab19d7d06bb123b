"""
Voice session - per-guild voice connections, playback and idle teardown
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from soundboard.errors import PlaybackError, SoundboardError, VoiceJoinTimeout, classify_failure
from soundboard.voice.resource import TemporaryAudioResource
from soundboard.voice.transport import AudioPlayer, ConnectionStatus, PlayerStatus, VoiceConnection

logger = logging.getLogger(__name__)


@dataclass
class GuildVoiceState:
    """Per-guild voice connection and the player bound to it."""
    guild_id: int
    connection: VoiceConnection
    player: AudioPlayer
    generation: int = 0  # Bumped on every play, so idle timers can tell if anything happened
    watcher: asyncio.Task | None = None


class VoiceSession:
    """
    Owns at most one voice connection per guild.

    Connections are reused across plays, watched for drops, and torn down
    after ``idle_timeout`` seconds without playback. Joining is serialized per
    guild; a new play on a busy guild pre-empts the sound currently playing.
    """

    def __init__(
        self,
        temp_dir: Path,
        *,
        idle_timeout: float = 15 * 60,
        join_timeout: float = 30.0,
        reconnect_timeout: float = 5.0,
        resource_factory: Callable[[Path], TemporaryAudioResource] = TemporaryAudioResource,
    ):
        self.temp_dir = temp_dir
        self.idle_timeout = idle_timeout
        self.join_timeout = join_timeout
        self.reconnect_timeout = reconnect_timeout
        self.resource_factory = resource_factory
        self._states: dict[int, GuildVoiceState] = {}
        self._idle_timers: dict[int, asyncio.Task] = {}
        # Entries live only while a play is holding or waiting on the lock
        self._join_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    # ==================== PLAYBACK ====================

    async def play_audio(
        self,
        voice_channel,
        guild_id: int,
        adapter,
        audio: bytes,
        title: str,
        on_start: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """
        Play ``audio`` in ``voice_channel`` and wait for it to finish.

        The temporary file is deleted before this returns or raises, and the
        idle-disconnect timer is re-armed afterwards. Raises VoiceJoinTimeout
        if the connection never becomes ready and PlaybackError if the player
        fails.
        """
        self._cancel_idle_timer(guild_id)

        try:
            async with self.resource_factory(self.temp_dir) as resource:
                try:
                    await resource.write(audio)
                    state = await self._ensure_state(voice_channel, guild_id, adapter)
                    state.generation += 1

                    finished = state.player.play(resource.path)
                    logger.info(f"Playing: {title} in guild {guild_id}")
                    if on_start is not None:
                        await self._notify_started(on_start, guild_id)
                    await finished
                except SoundboardError as e:
                    logger.error(f"Error in play_audio for guild {guild_id}: {e}")
                    raise
                except Exception as e:
                    logger.error(f"Error in play_audio for guild {guild_id}: {e!r}")
                    raise PlaybackError(f"Failed to play audio: {e}", cause=classify_failure(e)) from e

            logger.info(f"Finished playing: {title} in guild {guild_id}")
        finally:
            self._after_playback(guild_id)

    async def _notify_started(self, on_start: Callable[[], Awaitable[None]], guild_id: int) -> None:
        try:
            await on_start()
        except Exception as e:
            logger.warning(f"Playback start callback failed for guild {guild_id}: {e}")

    def _after_playback(self, guild_id: int) -> None:
        state = self._states.get(guild_id)
        if state is None:
            return
        if state.connection.status is ConnectionStatus.DESTROYED:
            self._forget(state)
            return
        self.schedule_idle_disconnect(guild_id)

    # ==================== CONNECTIONS ====================

    async def _ensure_state(self, voice_channel, guild_id: int, adapter) -> GuildVoiceState:
        """Reuse the guild's live connection or join ``voice_channel``."""
        lock = self._join_locks.setdefault(guild_id, asyncio.Lock())
        async with lock:
            state = self._states.get(guild_id)
            if state is not None:
                if state.connection.status is not ConnectionStatus.DESTROYED:
                    logger.debug(f"Reusing existing voice connection for guild {guild_id}")
                    return state
                self._forget(state)

            connection = adapter.join(voice_channel, guild_id)
            try:
                status = await connection.wait_for(
                    ConnectionStatus.READY, ConnectionStatus.DESTROYED, timeout=self.join_timeout
                )
            except asyncio.TimeoutError as e:
                logger.error(f"Voice connection for guild {guild_id} not ready after {self.join_timeout:g}s")
                await connection.destroy()
                raise VoiceJoinTimeout(
                    f"Failed to join voice channel within {self.join_timeout:g}s",
                    cause=connection.failure_cause,
                ) from e

            if status is ConnectionStatus.DESTROYED:
                await connection.destroy()
                raise VoiceJoinTimeout("Failed to join voice channel", cause=connection.failure_cause)

            state = GuildVoiceState(guild_id=guild_id, connection=connection, player=connection.create_player())
            state.watcher = asyncio.create_task(self._watch_connection(state), name=f"voice-watch:{guild_id}")
            self._states[guild_id] = state
            logger.info(f"Created new voice connection for guild {guild_id}")
            return state

    async def _watch_connection(self, state: GuildVoiceState) -> None:
        """Tear the session down if a dropped connection does not come back in time."""
        connection = state.connection
        try:
            while True:
                status = await connection.wait_for(ConnectionStatus.DISCONNECTED, ConnectionStatus.DESTROYED)
                if status is ConnectionStatus.DESTROYED:
                    break

                logger.warning(f"Voice connection disconnected for guild {state.guild_id}")
                try:
                    await connection.wait_for(
                        ConnectionStatus.SIGNALLING,
                        ConnectionStatus.CONNECTING,
                        ConnectionStatus.READY,
                        ConnectionStatus.DESTROYED,
                        timeout=self.reconnect_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning(f"Failed to reconnect, destroying connection for guild {state.guild_id}")
                    await connection.destroy()
                    break

                if connection.status is not ConnectionStatus.DESTROYED:
                    logger.info(f"Voice connection recovering for guild {state.guild_id}")
        finally:
            self._forget(state)

    def _forget(self, state: GuildVoiceState) -> None:
        """Drop a guild's state if it is still the registered one."""
        if self._states.get(state.guild_id) is not state:
            return

        del self._states[state.guild_id]
        self._cancel_idle_timer(state.guild_id)
        if state.watcher and state.watcher is not asyncio.current_task():
            state.watcher.cancel()

    async def disconnect(self, guild_id: int) -> bool:
        """Stop playing and leave the guild's voice channel. Returns False if not connected."""
        self._cancel_idle_timer(guild_id)
        state = self._states.pop(guild_id, None)
        if state is None:
            return False

        state.player.stop()
        await state.connection.destroy()
        logger.info(f"Disconnected from guild {guild_id}")
        return True

    def is_connected(self, guild_id: int) -> bool:
        state = self._states.get(guild_id)
        return state is not None and state.connection.status is not ConnectionStatus.DESTROYED

    def get_state(self, guild_id: int) -> GuildVoiceState | None:
        return self._states.get(guild_id)

    async def close(self) -> None:
        """Disconnect from every guild."""
        for guild_id in list(self._states):
            await self.disconnect(guild_id)

    # ==================== IDLE DISCONNECT ====================

    def schedule_idle_disconnect(self, guild_id: int) -> None:
        """(Re)arm the inactivity timer for a guild."""
        self._cancel_idle_timer(guild_id)
        state = self._states.get(guild_id)
        if state is None:
            return

        self._idle_timers[guild_id] = asyncio.create_task(
            self._idle_disconnect(state, state.generation), name=f"voice-idle:{guild_id}"
        )

    def _cancel_idle_timer(self, guild_id: int) -> None:
        timer = self._idle_timers.pop(guild_id, None)
        if timer and timer is not asyncio.current_task():
            timer.cancel()

    async def _idle_disconnect(self, state: GuildVoiceState, generation: int) -> None:
        await asyncio.sleep(self.idle_timeout)

        guild_id = state.guild_id
        if self._idle_timers.get(guild_id) is asyncio.current_task():
            del self._idle_timers[guild_id]

        if self._states.get(guild_id) is not state:
            return
        if state.generation != generation or state.player.status is not PlayerStatus.IDLE:
            logger.debug(f"Guild {guild_id} is active again, skipping auto-disconnect")
            return

        logger.info(f"Auto-disconnecting from guild {guild_id} after {self.idle_timeout / 60:g} minutes of inactivity")
        del self._states[guild_id]
        await state.connection.destroy()
