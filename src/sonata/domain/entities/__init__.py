"""Domain entities."""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from sonata.domain.exceptions import ValidationError
from sonata.domain.value_objects import PlaylistId, SongId

_EXTENSION_RE = re.compile(r"\.[^/.]+$")


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def strip_extension(filename: str) -> str:
    """Return the filename without its last extension ("a.b.mp3" -> "a.b")."""
    return _EXTENSION_RE.sub("", filename)


# Hey future me, Genre is the FIXED set a playlist must pick from. The value is
# what gets stored, label/emoji are display metadata for the presentation layer.
class Genre(str, Enum):
    """Musical genre of a playlist."""

    CLASSICAL = "classical"
    JAZZ = "jazz"
    ROCK = "rock"
    POP = "pop"
    ELECTRONIC = "electronic"
    HIPHOP = "hiphop"
    BLUES = "blues"
    METAL = "metal"
    REGGAE = "reggae"
    COUNTRY = "country"

    @property
    def label(self) -> str:
        return _GENRE_DISPLAY[self][0]

    @property
    def emoji(self) -> str:
        return _GENRE_DISPLAY[self][1]


_GENRE_DISPLAY: dict[Genre, tuple[str, str]] = {
    Genre.CLASSICAL: ("Classical", "🎻"),
    Genre.JAZZ: ("Jazz", "🎷"),
    Genre.ROCK: ("Rock", "🎸"),
    Genre.POP: ("Pop", "🎤"),
    Genre.ELECTRONIC: ("Electronic", "🎛️"),
    Genre.HIPHOP: ("Hip-Hop", "🎧"),
    Genre.BLUES: ("Blues", "🎹"),
    Genre.METAL: ("Metal", "🤘"),
    Genre.REGGAE: ("Reggae", "🌴"),
    Genre.COUNTRY: ("Country", "🤠"),
}


class Mood(str, Enum):
    """Optional mood tag of a playlist."""

    ENERGETIC = "energetic"
    RELAXED = "relaxed"
    FOCUSED = "focused"
    PARTY = "party"
    MELANCHOLIC = "melancholic"
    EUPHORIC = "euphoric"


class TimeOfDay(str, Enum):
    """Optional time-of-day tag of a playlist."""

    MORNING = "morning"
    MIDDAY = "midday"
    EVENING = "evening"
    NIGHT = "night"


class OrderMode(str, Enum):
    """Playback ordering mode."""

    SEQUENTIAL = "sequential"
    SHUFFLED = "shuffled"


# Yo future me, Song is the core library entry. audio_data is the raw upload and
# never changes after creation (rename/favorite/stats produce modified copies via
# dataclasses.replace). play_count=None marks a record stored before statistics
# existed - LibraryRepository.migrate_statistics() turns those into 0 once.
# primary_playlist_id is the legacy single-playlist link, display only; real
# membership lives in Playlist.song_ids.
@dataclass
class Song:
    """Song entity wrapping one audio payload and its metadata."""

    id: SongId
    name: str
    audio_data: bytes = field(repr=False)
    mime_type: str
    size_bytes: int = 0
    date_added: datetime = field(default_factory=utc_now)
    primary_playlist_id: PlaylistId | None = None
    is_favorite: bool = False
    play_count: int | None = 0
    last_played: datetime | None = None

    def __post_init__(self) -> None:
        """Validate song data."""
        if not self.name or not self.name.strip():
            raise ValidationError("Song name cannot be empty")
        if not self.mime_type:
            raise ValidationError("Song MIME type cannot be empty")
        if self.size_bytes < 0:
            raise ValidationError("Song size cannot be negative")
        if self.play_count is not None and self.play_count < 0:
            raise ValidationError("Play count cannot be negative")

    @classmethod
    def create(
        cls,
        name: str,
        audio_data: bytes,
        mime_type: str,
        primary_playlist_id: PlaylistId | None = None,
    ) -> "Song":
        """Create a brand-new song with a fresh id."""
        return cls(
            id=SongId.generate(),
            name=name.strip(),
            audio_data=audio_data,
            mime_type=mime_type,
            size_bytes=len(audio_data),
            primary_playlist_id=primary_playlist_id,
        )

    @property
    def needs_stats_migration(self) -> bool:
        """True for legacy records created before play statistics existed."""
        return self.play_count is None

    @property
    def plays(self) -> int:
        """Play count with legacy records counted as zero."""
        return self.play_count or 0

    @property
    def has_been_played(self) -> bool:
        return self.plays > 0


# Listen, Playlist.song_ids is the AUTHORITATIVE membership list: insertion order,
# no duplicates. Use add_songs/remove_song instead of touching song_ids so the
# no-duplicate rule can't be bypassed. Ids of deleted songs may linger here until
# the delete cascade finished - readers resolve through the repository, which
# drops unknown ids.
@dataclass
class Playlist:
    """Playlist entity: a named, ordered set of song references plus tags."""

    id: PlaylistId
    name: str
    genre: Genre
    mood: Mood | None = None
    time_of_day: TimeOfDay | None = None
    song_ids: list[SongId] = field(default_factory=list)
    date_created: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        """Validate playlist data."""
        if not self.name or not self.name.strip():
            raise ValidationError("Playlist name cannot be empty")
        if not isinstance(self.genre, Genre):
            try:
                self.genre = Genre(self.genre)
            except ValueError as e:
                raise ValidationError(f"Unknown genre: {self.genre!r}") from e
        if self.mood is not None and not isinstance(self.mood, Mood):
            try:
                self.mood = Mood(self.mood)
            except ValueError as e:
                raise ValidationError(f"Unknown mood: {self.mood!r}") from e
        if self.time_of_day is not None and not isinstance(self.time_of_day, TimeOfDay):
            try:
                self.time_of_day = TimeOfDay(self.time_of_day)
            except ValueError as e:
                raise ValidationError(f"Unknown time of day: {self.time_of_day!r}") from e
        deduped: list[SongId] = []
        for song_id in self.song_ids:
            if song_id not in deduped:
                deduped.append(song_id)
        self.song_ids = deduped

    @classmethod
    def create(
        cls,
        name: str,
        genre: Genre | str,
        mood: Mood | str | None = None,
        time_of_day: TimeOfDay | str | None = None,
    ) -> "Playlist":
        """Create a new empty playlist with a fresh id."""
        return cls(
            id=PlaylistId.generate(),
            name=name.strip() if name else name,
            genre=genre,  # type: ignore[arg-type]  # coerced in __post_init__
            mood=mood or None,  # type: ignore[arg-type]
            time_of_day=time_of_day or None,  # type: ignore[arg-type]
        )

    def add_songs(self, song_ids: list[SongId]) -> list[SongId]:
        """Append ids not already present; returns the ids actually added."""
        added: list[SongId] = []
        for song_id in song_ids:
            if song_id not in self.song_ids:
                self.song_ids.append(song_id)
                added.append(song_id)
        return added

    def remove_song(self, song_id: SongId) -> bool:
        """Remove a song id; returns False if it wasn't there."""
        if song_id in self.song_ids:
            self.song_ids.remove(song_id)
            return True
        return False

    def contains(self, song_id: SongId) -> bool:
        return song_id in self.song_ids

    def song_count(self) -> int:
        """Number of stored references (dangling ones included)."""
        return len(self.song_ids)


__all__ = [
    "Genre",
    "Mood",
    "OrderMode",
    "Playlist",
    "Song",
    "TimeOfDay",
    "strip_extension",
    "utc_now",
]
