"""Shared fixtures for the music coordinator tests."""

import pathlib
import random
from collections.abc import AsyncIterator
from unittest.mock import Mock

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from music_coordinator.store import PlaylistStore


@pytest_asyncio.fixture
async def db_engine(tmp_path: pathlib.Path) -> AsyncIterator[AsyncEngine]:
    """Async engine on a fresh SQLite file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'coordinator.db'}")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def playlist_store(db_engine: AsyncEngine) -> PlaylistStore:
    """Initialized store with a seeded random generator."""
    store = PlaylistStore(db_engine, Mock(), rng=random.Random(7))
    await store.initialize()
    return store
