"""Shared test fixtures."""

from pathlib import Path

import pytest

from sonata.application.events import EventEmitter
from sonata.application.services import LibraryRepository
from sonata.config import DatabaseSettings, Settings
from tests.fakes import FakeStore


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def events() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
async def repository(store: FakeStore, events: EventEmitter) -> LibraryRepository:
    """Loaded repository on an empty FakeStore."""
    repo = LibraryRepository(store, events)
    await repo.load()
    return repo


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'data' / 'sonata.db'}"),
    )
