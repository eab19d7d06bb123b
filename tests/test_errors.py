"""Tests for failure classification and user-facing messages."""

import errno
from unittest.mock import Mock

import discord
import pytest

from soundboard.cogs.sounds import FAILURE_HINTS, failure_message
from soundboard.errors import (
    FailureCause,
    FetchError,
    PlaybackError,
    VoiceJoinTimeout,
    classify_failure,
)


@pytest.mark.parametrize("exc, expected", [
    (PermissionError("denied"), FailureCause.FILE_PERMISSION),
    (OSError(errno.EROFS, "Read-only file system"), FailureCause.FILE_PERMISSION),
    (OSError(errno.ENOSPC, "No space left"), FailureCause.UNKNOWN),
    (RuntimeError("Permission denied"), FailureCause.UNKNOWN),
    (PlaybackError("x", cause=FailureCause.ENCRYPTION), FailureCause.ENCRYPTION),
])
def test_classify_failure(exc, expected):
    assert classify_failure(exc) is expected


def test_classify_forbidden():
    forbidden = discord.Forbidden(Mock(status=403, reason="Forbidden"), "Missing Access")

    assert classify_failure(forbidden) is FailureCause.CONNECT_PERMISSION


class TestFailureMessage:

    def test_includes_hint_for_known_cause(self):
        message = failure_message(PlaybackError("boom", cause=FailureCause.FILE_PERMISSION))

        assert "boom" in message
        assert FAILURE_HINTS[FailureCause.FILE_PERMISSION] in message

    def test_join_timeout_defaults_to_permission_hint(self):
        message = failure_message(VoiceJoinTimeout("Failed to join voice channel within 30s"))

        assert FAILURE_HINTS[FailureCause.CONNECT_PERMISSION] in message

    def test_encryption_hint_for_join_timeout(self):
        message = failure_message(VoiceJoinTimeout("x", cause=FailureCause.ENCRYPTION))

        assert FAILURE_HINTS[FailureCause.ENCRYPTION] in message
        assert FAILURE_HINTS[FailureCause.CONNECT_PERMISSION] not in message

    def test_no_hint_for_unknown_cause(self):
        message = failure_message(FetchError("HTTP 500"))

        assert message == "❌ Failed to get sound: HTTP 500"
