"""Play statistics: recording plays and the derived views over them."""

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

from sonata.application.events import EventEmitter, LibraryEvent
from sonata.application.services.library_repository import LibraryRepository
from sonata.domain.entities import Song
from sonata.domain.exceptions import DomainException
from sonata.domain.value_objects import SongId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlayTrends:
    """Aggregate listening figures over the whole library."""

    total_plays: int
    played_songs: int
    library_size: int
    average_plays_per_played_song: float
    percent_library_played: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Hey future me - recording a play is a SIDE EFFECT of playback, never a gate on
# it. The tracker listens for TRACK_LOADED; its handler is async, so the emitter
# runs it as a background task and the engine has already moved on. A failed
# persist is logged as a warning and the play is simply not counted.
# The views below are computed on demand from the repository, nothing is stored.
class StatisticsTracker:
    """Records plays and derives most-played / recently-played / trends."""

    def __init__(
        self,
        repository: LibraryRepository,
        events: EventEmitter | None = None,
        top_n: int = 10,
    ) -> None:
        self._repository = repository
        self._events = events or repository.events
        self._top_n = top_n
        self._unsubscribe = self._events.subscribe(
            LibraryEvent.TRACK_LOADED, self.on_track_loaded
        )

    def close(self) -> None:
        """Stop recording plays."""
        self._unsubscribe()

    async def on_track_loaded(
        self, song_id: SongId, loaded_at: datetime | None = None, **_: Any
    ) -> None:
        """Count one play of `song_id`. Best-effort, never raises."""
        try:
            song = await self._repository.record_play(song_id, loaded_at)
        except DomainException as e:
            logger.warning("Could not record play of song %s: %s", song_id, e.message)
            return
        logger.debug("Recorded play %d of song %s", song.plays, song_id)

    def most_played(self, limit: int | None = None) -> list[Song]:
        """Songs by play count descending; ties keep library order. Unplayed songs excluded."""
        played = [song for song in self._repository.songs if song.has_been_played]
        # sorted() is stable, so equal counts stay in insertion order
        ranked = sorted(played, key=lambda song: song.plays, reverse=True)
        return ranked[: self._limit(limit)]

    def recently_played(self, limit: int | None = None) -> list[Song]:
        """Songs by last_played descending. Never-played songs excluded."""
        played = [song for song in self._repository.songs if song.last_played is not None]
        ranked = sorted(played, key=lambda song: _as_utc(song.last_played), reverse=True)
        return ranked[: self._limit(limit)]

    def trends(self) -> PlayTrends:
        songs = self._repository.songs
        total_plays = sum(song.plays for song in songs)
        played_songs = sum(1 for song in songs if song.has_been_played)
        average = round(total_plays / played_songs, 2) if played_songs else 0.0
        percent = round(played_songs / len(songs) * 100, 1) if songs else 0.0
        return PlayTrends(
            total_plays=total_plays,
            played_songs=played_songs,
            library_size=len(songs),
            average_plays_per_played_song=average,
            percent_library_played=percent,
        )

    def _limit(self, limit: int | None) -> int:
        return self._top_n if limit is None else max(limit, 0)


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.min.replace(tzinfo=UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
