"""Unit tests for the statistics tracker."""

import random
from datetime import UTC, datetime, timedelta

import pytest

from sonata.application.events import EventEmitter, LibraryEvent
from sonata.application.services import (
    LibraryRepository,
    PlaybackEngine,
    StatisticsTracker,
)
from sonata.infrastructure.audio import NullAudioOutput
from tests.fakes import FakeStore, make_song


@pytest.fixture
def tracker(repository: LibraryRepository, events: EventEmitter) -> StatisticsTracker:
    return StatisticsTracker(repository, events, top_n=3)


class TestRecordingPlays:
    """Test that track loads become recorded plays."""

    async def test_three_loads_count_three_plays(
        self,
        repository: LibraryRepository,
        events: EventEmitter,
        tracker: StatisticsTracker,
        store: FakeStore,
    ) -> None:
        """Play Y three times: count 3, last_played = time of the third load."""
        loaded_at: list[datetime] = []
        events.subscribe(
            LibraryEvent.TRACK_LOADED, lambda **payload: loaded_at.append(payload["loaded_at"])
        )
        engine = PlaybackEngine(repository, NullAudioOutput(), events, rng=random.Random(0))
        y = await repository.add_song(make_song("Y"))

        for _ in range(3):
            await engine.play_song(y.id)
        await events.drain()

        song = repository.get_song(y.id)
        assert song.play_count == 3
        assert song.last_played == loaded_at[-1]
        assert store.songs.records[y.id].play_count == 3

    async def test_failed_persist_is_logged_not_raised(
        self,
        repository: LibraryRepository,
        events: EventEmitter,
        tracker: StatisticsTracker,
        store: FakeStore,
        caplog,
    ) -> None:
        song = await repository.add_song(make_song())
        store.songs.fail("put", song.id)

        events.emit(LibraryEvent.TRACK_LOADED, song_id=song.id, loaded_at=datetime.now(UTC))
        await events.drain()

        assert repository.get_song(song.id).play_count == 0
        assert "Could not record play" in caplog.text

    async def test_close_stops_recording(
        self, repository: LibraryRepository, events: EventEmitter, tracker: StatisticsTracker
    ) -> None:
        song = await repository.add_song(make_song())
        tracker.close()

        events.emit(LibraryEvent.TRACK_LOADED, song_id=song.id, loaded_at=datetime.now(UTC))
        await events.drain()

        assert repository.get_song(song.id).play_count == 0


class TestDerivedViews:
    """Test most played, recently played and trends."""

    @pytest.fixture
    async def played_library(self, repository: LibraryRepository) -> LibraryRepository:
        base = datetime(2026, 3, 1, tzinfo=UTC)
        plays = {"A": 2, "B": 5, "C": 2, "D": 0, "E": 1}
        for offset, (name, count) in enumerate(plays.items()):
            song = await repository.add_song(make_song(name))
            for n in range(count):
                await repository.record_play(song.id, base + timedelta(hours=offset, minutes=n))
        return repository

    async def test_most_played_orders_by_count_then_insertion(
        self, played_library: LibraryRepository, tracker: StatisticsTracker
    ) -> None:
        names = [song.name for song in tracker.most_played(limit=10)]
        assert names == ["B", "A", "C", "E"]

    async def test_most_played_uses_default_top_n(
        self, played_library: LibraryRepository, tracker: StatisticsTracker
    ) -> None:
        assert [song.name for song in tracker.most_played()] == ["B", "A", "C"]

    async def test_recently_played(
        self, played_library: LibraryRepository, tracker: StatisticsTracker
    ) -> None:
        names = [song.name for song in tracker.recently_played(limit=10)]
        assert names == ["E", "C", "B", "A"]

    async def test_trends(
        self, played_library: LibraryRepository, tracker: StatisticsTracker
    ) -> None:
        trends = tracker.trends()

        assert trends.total_plays == 10
        assert trends.played_songs == 4
        assert trends.library_size == 5
        assert trends.average_plays_per_played_song == 2.5
        assert trends.percent_library_played == 80.0
        assert trends.to_dict()["total_plays"] == 10

    async def test_trends_on_empty_library(self, tracker: StatisticsTracker) -> None:
        trends = tracker.trends()
        assert trends.total_plays == 0
        assert trends.average_plays_per_played_song == 0.0
        assert trends.percent_library_played == 0.0

    async def test_legacy_songs_count_as_unplayed(
        self, repository: LibraryRepository, tracker: StatisticsTracker
    ) -> None:
        await repository.add_song(make_song("Legacy", play_count=None))
        assert tracker.most_played() == []
        assert tracker.trends().played_songs == 0
