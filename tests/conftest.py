"""Shared pytest fixtures for the soundboard test suite.

Databases are real aiosqlite files under ``tmp_path``; voice transports are
the fakes from ``tests.fakes``.
"""

from pathlib import Path

import pytest

from soundboard.database.connection import DatabaseManager
from soundboard.services.cache import AudioCache
from soundboard.voice.session import VoiceSession

from tests.fakes import FakeAdapter


@pytest.fixture
async def db(tmp_path):
    manager = await DatabaseManager.create(tmp_path / "test.db")
    yield manager
    await manager.close()


@pytest.fixture
async def cache(db):
    return AudioCache(db)


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    return tmp_path / "temp"


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
async def session(temp_dir):
    voice = VoiceSession(temp_dir, idle_timeout=0.2, join_timeout=0.2, reconnect_timeout=0.05)
    yield voice
    await voice.close()
