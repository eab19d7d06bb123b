"""Tests for the connection status machine and the discord.py connection."""

import asyncio
from unittest.mock import AsyncMock, Mock

import discord
import pytest

from soundboard.errors import FailureCause
from soundboard.voice.transport import ConnectionStatus, DiscordTransportAdapter, DiscordVoiceConnection

from tests.fakes import FakeConnection, FakePlayer


def make_channel(guild_id: int = 42, connect=None):
    channel = Mock()
    channel.name = "General"
    channel.guild.id = guild_id
    channel.guild.voice_client = None
    channel.connect = connect or AsyncMock(return_value=make_voice_client())
    return channel


def make_voice_client():
    vc = Mock()
    vc.is_connected.return_value = True
    vc.is_playing.return_value = False
    vc.is_paused.return_value = False
    vc.disconnect = AsyncMock()
    return vc


def voice_state(channel):
    return Mock(channel=channel)


class TestStatusMachine:

    async def test_wait_for_returns_current_status(self):
        connection = FakeConnection(1, FakePlayer())

        status = await connection.wait_for(ConnectionStatus.SIGNALLING, timeout=0.01)

        assert status is ConnectionStatus.SIGNALLING

    async def test_wait_for_resolves_on_transition(self):
        connection = FakeConnection(1, FakePlayer())

        waiter = asyncio.create_task(connection.wait_for(ConnectionStatus.READY, timeout=1.0))
        await asyncio.sleep(0)
        connection._set_status(ConnectionStatus.CONNECTING)
        assert not waiter.done()
        connection._set_status(ConnectionStatus.READY)

        assert await waiter is ConnectionStatus.READY

    async def test_wait_for_times_out(self):
        connection = FakeConnection(1, FakePlayer())

        with pytest.raises(asyncio.TimeoutError):
            await connection.wait_for(ConnectionStatus.READY, timeout=0.01)

    async def test_destroyed_is_terminal(self):
        connection = FakeConnection(1, FakePlayer())

        await connection.destroy()
        connection._set_status(ConnectionStatus.READY)

        assert connection.status is ConnectionStatus.DESTROYED
        assert connection.history == [ConnectionStatus.SIGNALLING, ConnectionStatus.DESTROYED]


class TestDiscordVoiceConnection:

    async def test_connect_reaches_ready(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", True, raising=False)
        channel = make_channel()
        connection = DiscordVoiceConnection(channel)

        connection.open()
        status = await connection.wait_for(ConnectionStatus.READY, ConnectionStatus.DESTROYED, timeout=1.0)

        assert status is ConnectionStatus.READY
        channel.connect.assert_awaited_once()
        assert channel.connect.await_args.kwargs["self_deaf"] is True

    async def test_missing_encryption_library(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", False, raising=False)
        channel = make_channel()
        connection = DiscordVoiceConnection(channel)

        connection.open()
        status = await connection.wait_for(ConnectionStatus.READY, ConnectionStatus.DESTROYED, timeout=1.0)

        assert status is ConnectionStatus.DESTROYED
        assert connection.failure_cause is FailureCause.ENCRYPTION
        channel.connect.assert_not_awaited()

    async def test_forbidden_join_is_a_permission_failure(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", True, raising=False)
        forbidden = discord.Forbidden(Mock(status=403, reason="Forbidden"), "Missing Permissions")
        channel = make_channel(connect=AsyncMock(side_effect=forbidden))
        connection = DiscordVoiceConnection(channel)

        connection.open()
        status = await connection.wait_for(ConnectionStatus.READY, ConnectionStatus.DESTROYED, timeout=1.0)

        assert status is ConnectionStatus.DESTROYED
        assert connection.failure_cause is FailureCause.CONNECT_PERMISSION

    async def test_voice_state_updates_drive_reconnect(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", True, raising=False)
        channel = make_channel()
        connection = DiscordVoiceConnection(channel)
        connection.open()
        await connection.wait_for(ConnectionStatus.READY, timeout=1.0)

        connection.handle_voice_state(voice_state(channel), voice_state(None))
        assert connection.status is ConnectionStatus.DISCONNECTED

        connection.handle_voice_state(voice_state(None), voice_state(channel))
        assert connection.status is ConnectionStatus.READY

    async def test_destroy_disconnects_voice_client(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", True, raising=False)
        channel = make_channel()
        connection = DiscordVoiceConnection(channel)
        connection.open()
        await connection.wait_for(ConnectionStatus.READY, timeout=1.0)
        vc = connection.voice_client

        await connection.destroy()

        assert connection.status is ConnectionStatus.DESTROYED
        vc.disconnect.assert_awaited_once_with(force=True)


class TestDiscordTransportAdapter:

    async def test_routes_voice_state_to_connection(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", True, raising=False)
        channel = make_channel(guild_id=7)
        adapter = DiscordTransportAdapter(connect_timeout=1.0)

        connection = adapter.join(channel, 7)
        await connection.wait_for(ConnectionStatus.READY, timeout=1.0)
        adapter.handle_voice_state(7, voice_state(channel), voice_state(None))
        adapter.handle_voice_state(99, voice_state(channel), voice_state(None))

        assert connection.status is ConnectionStatus.DISCONNECTED

    async def test_destroyed_connection_is_released(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", True, raising=False)
        adapter = DiscordTransportAdapter(connect_timeout=1.0)

        connection = adapter.join(make_channel(guild_id=7), 7)
        await connection.wait_for(ConnectionStatus.READY, timeout=1.0)
        await connection.destroy()

        assert 7 not in adapter._connections

    async def test_failed_join_is_released(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", False, raising=False)
        adapter = DiscordTransportAdapter(connect_timeout=1.0)

        connection = adapter.join(make_channel(guild_id=7), 7)
        await connection.wait_for(ConnectionStatus.DESTROYED, timeout=1.0)

        assert adapter._connections == {}

    async def test_rejoin_keeps_newer_connection(self, monkeypatch):
        monkeypatch.setattr(discord.voice_client, "has_nacl", True, raising=False)
        adapter = DiscordTransportAdapter(connect_timeout=1.0)

        old = adapter.join(make_channel(guild_id=7), 7)
        new = adapter.join(make_channel(guild_id=7), 7)
        await old.destroy()

        assert adapter._connections[7] is new
