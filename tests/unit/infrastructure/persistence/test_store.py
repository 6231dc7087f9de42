"""Tests for the SQLAlchemy persistent store against a real SQLite file.

Hey future me - these use a throwaway file database under tmp_path (not
:memory:, which gives every pooled connection its own empty database).
"""

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from sonata.config import Settings
from sonata.domain.entities import Genre, Mood, Playlist, Song
from sonata.domain.exceptions import ConfigurationError, StorageError
from sonata.domain.value_objects import SongId
from sonata.infrastructure.persistence import (
    Database,
    SongModel,
    SqlAlchemyPersistentStore,
    execute_with_retry,
    is_lock_error,
)


@pytest.fixture
async def store(settings: Settings) -> AsyncIterator[SqlAlchemyPersistentStore]:
    settings._get_sqlite_db_path().parent.mkdir(parents=True, exist_ok=True)
    store = SqlAlchemyPersistentStore(Database(settings))
    await store.initialize()
    yield store
    await store.close()


class TestInitialization:
    """Test store initialization rules."""

    async def test_initialize_twice_raises(self, store: SqlAlchemyPersistentStore) -> None:
        with pytest.raises(ConfigurationError):
            await store.initialize()

    async def test_operations_before_initialize_fail(self, settings: Settings) -> None:
        """Test that using an uninitialized store raises StorageError."""
        store = SqlAlchemyPersistentStore(Database(settings))
        try:
            with pytest.raises(StorageError, match="not initialized"):
                await store.songs.load_all()
        finally:
            await store.close()


class TestSongCollection:
    """Test song round trips through the songs table."""

    async def test_put_and_load_song(self, store: SqlAlchemyPersistentStore) -> None:
        song = Song.create("Clair de Lune", b"\x00" * 64, "audio/mpeg")
        song.last_played = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        song.play_count = 4

        await store.songs.put(song)
        loaded = await store.songs.load_all()

        assert len(loaded) == 1
        assert loaded[0].id == song.id
        assert loaded[0].audio_data == song.audio_data
        assert loaded[0].play_count == 4
        assert loaded[0].last_played == song.last_played
        assert loaded[0].date_added.tzinfo is not None

    async def test_put_replaces_existing_record(self, store: SqlAlchemyPersistentStore) -> None:
        song = Song.create("Draft", b"x", "audio/ogg")
        await store.songs.put(song)
        song.name = "Final"
        await store.songs.put(song)

        loaded = await store.songs.load_all()
        assert [s.name for s in loaded] == ["Final"]

    async def test_delete_missing_id_is_ignored(self, store: SqlAlchemyPersistentStore) -> None:
        await store.songs.delete(SongId.generate())
        assert await store.songs.load_all() == []

    async def test_legacy_row_loads_with_null_play_count(
        self, store: SqlAlchemyPersistentStore
    ) -> None:
        """Rows written before statistics existed come back with play_count None."""
        song = Song.create("Old", b"x", "audio/ogg")
        await store.songs.put(song)

        async def _strip_stats(session):
            await session.execute(update(SongModel).values(play_count=None))

        await store.run("test.strip_stats", _strip_stats)

        loaded = await store.songs.load_all()
        assert loaded[0].needs_stats_migration is True


class TestPlaylistCollection:
    """Test playlist round trips."""

    async def test_membership_order_survives_round_trip(
        self, store: SqlAlchemyPersistentStore
    ) -> None:
        ids = [SongId.generate() for _ in range(3)]
        playlist = Playlist.create("Focus", Genre.CLASSICAL, mood=Mood.FOCUSED)
        playlist.add_songs(list(reversed(ids)))

        await store.playlists.put(playlist)
        (loaded,) = await store.playlists.load_all()

        assert loaded.song_ids == list(reversed(ids))
        assert loaded.mood is Mood.FOCUSED
        assert loaded.time_of_day is None


class TestStoreWideOperations:
    """Test clear_all and estimate_usage."""

    async def test_clear_all(self, store: SqlAlchemyPersistentStore) -> None:
        await store.songs.put(Song.create("A", b"x", "audio/ogg"))
        await store.playlists.put(Playlist.create("P", Genre.POP))

        await store.clear_all()

        assert await store.songs.load_all() == []
        assert await store.playlists.load_all() == []

    async def test_clear_all_attempts_both_collections(
        self, store: SqlAlchemyPersistentStore
    ) -> None:
        """A failing first collection does not stop the second one."""
        await store.playlists.put(Playlist.create("P", Genre.POP))
        store.songs.clear = AsyncMock(side_effect=StorageError("boom", operation="songs.clear"))

        with pytest.raises(StorageError, match="songs.clear"):
            await store.clear_all()

        assert await store.playlists.load_all() == []

    async def test_estimate_usage_sums_audio_bytes(
        self, store: SqlAlchemyPersistentStore
    ) -> None:
        await store.songs.put(Song.create("A", b"x" * 100, "audio/ogg"))
        await store.songs.put(Song.create("B", b"x" * 50, "audio/ogg"))

        estimate = await store.estimate_usage()

        assert estimate.used_bytes == 150
        assert estimate.total_bytes is not None and estimate.total_bytes > 0


class TestRetry:
    """Test lock-error retries."""

    def test_is_lock_error(self) -> None:
        locked = OperationalError("INSERT", {}, Exception("database is locked"))
        other = OperationalError("INSERT", {}, Exception("no such table: songs"))

        assert is_lock_error(locked) is True
        assert is_lock_error(other) is False
        assert is_lock_error(ValueError("locked")) is False

    async def test_lock_error_retried_until_success(self) -> None:
        locked = OperationalError("UPDATE", {}, Exception("database is locked"))
        operation = AsyncMock(side_effect=[locked, locked, "done"])

        result = await execute_with_retry(operation, max_attempts=3, initial_delay=0)

        assert result == "done"
        assert operation.await_count == 3

    async def test_lock_error_gives_up_after_max_attempts(self) -> None:
        locked = OperationalError("UPDATE", {}, Exception("database is busy"))
        operation = AsyncMock(side_effect=locked)

        with pytest.raises(OperationalError):
            await execute_with_retry(operation, max_attempts=2, initial_delay=0)
        assert operation.await_count == 2

    async def test_other_errors_not_retried(self) -> None:
        operation = AsyncMock(side_effect=OperationalError("X", {}, Exception("disk I/O error")))

        with pytest.raises(OperationalError):
            await execute_with_retry(operation, max_attempts=5, initial_delay=0)
        assert operation.await_count == 1

    async def test_store_wraps_driver_errors(self, store: SqlAlchemyPersistentStore) -> None:
        """Test that SQLAlchemy errors surface as StorageError with the cause attached."""
        cause = OperationalError("SELECT", {}, Exception("disk I/O error"))

        async def _broken(session):
            raise cause

        with pytest.raises(StorageError) as exc_info:
            await store.run("songs.load_all", _broken)

        assert exc_info.value.cause is cause
        assert exc_info.value.operation == "songs.load_all"
