"""
Playback coordinator - one sound request from fetch to voice
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from soundboard.errors import ErrorKind, PreconditionError, SoundboardError
from soundboard.services.fetcher import AudioFetcher, Provenance
from soundboard.voice.session import VoiceSession

logger = logging.getLogger(__name__)


@dataclass
class PlaybackRequest:
    """A user asking for a sound to be played."""
    guild_id: int
    voice_channel: Any
    source_url: str
    display_title: str


class PlaybackStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class PlaybackOutcome:
    status: PlaybackStatus
    provenance: Provenance | None = None
    error: SoundboardError | None = None

    @property
    def ok(self) -> bool:
        return self.status is PlaybackStatus.SUCCESS

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None


class PlaybackCoordinator:
    """Validates a request, resolves its audio and plays it in the guild's voice session."""

    def __init__(self, fetcher: AudioFetcher, voice: VoiceSession, transport):
        self.fetcher = fetcher
        self.voice = voice
        self.transport = transport

    async def execute(
        self,
        request: PlaybackRequest,
        on_playing: Callable[[Provenance], Awaitable[None]] | None = None,
    ) -> PlaybackOutcome:
        """
        Play a request and report how it went.

        Voice-channel membership and Connect/Speak permissions are checked by
        the caller. ``on_playing`` is awaited with the provenance once audio
        has started. Failures come back as an error outcome, never raised.
        """
        provenance = None
        try:
            if request.voice_channel is None:
                raise PreconditionError("You need to be in a voice channel first!")

            result = await self.fetcher.fetch(request.source_url)
            provenance = result.provenance

            async def started() -> None:
                if on_playing is not None:
                    await on_playing(provenance)

            await self.voice.play_audio(
                request.voice_channel,
                request.guild_id,
                self.transport,
                result.data,
                request.display_title,
                on_start=started,
            )
        except SoundboardError as e:
            logger.error(f"Playback of '{request.display_title}' failed in guild {request.guild_id} ({e.kind.value}): {e}")
            return PlaybackOutcome(PlaybackStatus.ERROR, provenance=provenance, error=e)

        return PlaybackOutcome(PlaybackStatus.SUCCESS, provenance=provenance)
