"""
Error taxonomy for scraping, fetching and voice playback
"""
import errno
from enum import Enum

import discord


class ErrorKind(str, Enum):
    """What stage of a playback request failed."""
    SCRAPE = "scrape"
    DOWNLOAD = "download"
    FETCH = "fetch"
    VOICE_JOIN_TIMEOUT = "voice_join_timeout"
    PLAYBACK = "playback"
    PRECONDITION = "precondition"


class FailureCause(str, Enum):
    """Known root causes the command layer can turn into a user hint."""
    ENCRYPTION = "encryption"
    FILE_PERMISSION = "file_permission"
    CONNECT_PERMISSION = "connect_permission"
    UNKNOWN = "unknown"


class SoundboardError(Exception):
    """Base class for every error surfaced to the command layer."""

    kind: ErrorKind = ErrorKind.PLAYBACK

    def __init__(self, message: str, *, cause: FailureCause = FailureCause.UNKNOWN):
        super().__init__(message)
        self.cause = cause


class ScrapeError(SoundboardError):
    """The page had no discoverable audio reference."""
    kind = ErrorKind.SCRAPE


class DownloadError(SoundboardError):
    """Network download of the audio bytes failed."""
    kind = ErrorKind.DOWNLOAD


class FetchError(SoundboardError):
    kind = ErrorKind.FETCH


class VoiceJoinTimeout(SoundboardError):
    """The voice connection never reached Ready."""
    kind = ErrorKind.VOICE_JOIN_TIMEOUT


class PlaybackError(SoundboardError):
    kind = ErrorKind.PLAYBACK


class PreconditionError(SoundboardError):
    kind = ErrorKind.PRECONDITION


def classify_failure(exc: BaseException) -> FailureCause:
    """Map a low-level exception to a FailureCause by type."""
    if isinstance(exc, SoundboardError):
        return exc.cause
    if isinstance(exc, discord.Forbidden):
        return FailureCause.CONNECT_PERMISSION
    if isinstance(exc, PermissionError):
        return FailureCause.FILE_PERMISSION
    if isinstance(exc, OSError) and exc.errno in (errno.EACCES, errno.EPERM, errno.EROFS):
        return FailureCause.FILE_PERMISSION
    return FailureCause.UNKNOWN
