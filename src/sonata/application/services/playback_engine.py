"""Playback engine - which song plays, and which one comes next.

State machine:

    Idle --play_at/play_song/play_playlist/toggle/next/previous--> Playing
    Playing --toggle_play--> Paused --toggle_play--> Playing
    Playing/Paused --next/previous/on_track_ended--> Playing (other track)

Ordering is either SEQUENTIAL (index +-1, wrapping around the whole library)
or SHUFFLED (a Fisher-Yates permutation of all indices, stepped through with
wraparound). Every fresh track load emits TRACK_LOADED, which the statistics
tracker turns into a recorded play. Resuming from pause does not.
Seek and volume controls never move the engine between states.
"""

import logging
import random
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

from sonata.application.events import EventEmitter, LibraryEvent
from sonata.application.services.library_repository import LibraryRepository
from sonata.domain.entities import OrderMode, Song, utc_now
from sonata.domain.exceptions import EntityNotFoundException, PlaybackError, ValidationError
from sonata.domain.ports import IAudioOutput
from sonata.domain.value_objects import PlaylistId, SongId

logger = logging.getLogger(__name__)


def generate_shuffled_queue(size: int, rng: random.Random) -> list[int]:
    """Uniform random permutation of range(size) (Fisher-Yates)."""
    queue = list(range(size))
    for i in range(size - 1, 0, -1):
        j = rng.randint(0, i)
        queue[i], queue[j] = queue[j], queue[i]
    return queue


@dataclass(frozen=True)
class PlaybackState:
    """Immutable snapshot of the engine for the presentation layer."""

    current_index: int | None
    current_song_id: SongId | None
    is_playing: bool
    order_mode: OrderMode
    queue_position: int | None = None
    volume: int = 100

    @property
    def is_idle(self) -> bool:
        return self.current_index is None


# Hey future me - the engine tracks the current song by BOTH index and id. The
# index is what next/previous step from, the id is what survives library changes:
# when songs are added or deleted, _on_library_changed re-resolves the index from
# the id, and if the current song is gone the engine drops back to Idle.
# The shuffle queue is tied to the library size; a size change makes it stale
# and it is regenerated (lazily on the next step, or right away on a change event).
class PlaybackEngine:
    """Playback state machine over the library's song collection."""

    def __init__(
        self,
        repository: LibraryRepository,
        audio_output: IAudioOutput,
        events: EventEmitter | None = None,
        rng: random.Random | None = None,
        order_mode: OrderMode = OrderMode.SEQUENTIAL,
        volume: int = 100,
    ) -> None:
        """Initialize engine.

        Args:
            repository: Loaded library repository (source of the song order)
            audio_output: Audio surface that actually plays sound
            events: Emitter (defaults to the repository's)
            rng: Random source for shuffling (seed it for reproducible queues)
            order_mode: Initial ordering
            volume: Initial volume in percent (0-100)
        """
        self._repository = repository
        self._audio = audio_output
        self._events = events or repository.events
        self._rng = rng or random.Random()

        self._current_index: int | None = None
        self._current_song_id: SongId | None = None
        self._is_playing = False
        self._order_mode = OrderMode(order_mode)
        self._volume = self._validate_volume(volume)
        self._shuffled_queue: list[int] = []
        if self._order_mode is OrderMode.SHUFFLED:
            self._regenerate_queue()

        self._unsubscribers = [
            self._events.subscribe(LibraryEvent.SONGS_CHANGED, self._on_library_changed),
            self._events.subscribe(LibraryEvent.LIBRARY_CLEARED, self._on_library_changed),
        ]

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def current_index(self) -> int | None:
        return self._current_index

    @property
    def current_song(self) -> Song | None:
        if self._current_song_id is None:
            return None
        return self._repository.get_song(self._current_song_id)

    @property
    def is_playing(self) -> bool:
        return self._is_playing

    @property
    def order_mode(self) -> OrderMode:
        return self._order_mode

    @property
    def volume(self) -> int:
        return self._volume

    @property
    def shuffled_queue(self) -> tuple[int, ...]:
        return tuple(self._shuffled_queue)

    def snapshot(self) -> PlaybackState:
        position = None
        if self._current_index is not None and self._current_index in self._shuffled_queue:
            position = self._shuffled_queue.index(self._current_index)
        return PlaybackState(
            current_index=self._current_index,
            current_song_id=self._current_song_id,
            is_playing=self._is_playing,
            order_mode=self._order_mode,
            queue_position=position,
            volume=self._volume,
        )

    def close(self) -> None:
        """Stop following library changes."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def play_at(self, index: int) -> None:
        """Load and play the song at `index` of the library.

        Raises:
            PlaybackError: Index out of range or audio could not be loaded
        """
        songs = self._repository.songs
        if not 0 <= index < len(songs):
            await self._stop_with_error()
            raise PlaybackError(f"No song at position {index}")
        await self._load_and_play(songs[index], index)

    async def play_song(self, song_id: SongId) -> None:
        """Load and play a song by id.

        Raises:
            PlaybackError: Song no longer in the library or audio load failed
        """
        index = self._repository.index_of(song_id)
        if index is None:
            await self._stop_with_error()
            raise PlaybackError("Song is no longer in the library", song_id=song_id)
        await self._load_and_play(self._repository.songs[index], index)

    async def play_playlist(self, playlist_id: PlaylistId) -> None:
        """Play the first resolvable member of a playlist.

        Raises:
            PlaybackError: Unknown playlist or no playable member
        """
        try:
            members = self._repository.playlist_members(playlist_id)
        except EntityNotFoundException as e:
            await self._stop_with_error()
            raise PlaybackError(e.message) from e
        if not members:
            await self._stop_with_error()
            raise PlaybackError("Playlist has no playable songs")
        await self.play_song(members[0].id)

    async def toggle_play(self) -> None:
        """Pause, resume, or (when idle) start at the beginning. No-op on an empty library."""
        if not self._repository.songs:
            return
        if self._current_index is None:
            await self.play_at(self._start_index(forward=True))
            return

        if self._is_playing:
            await self._audio.pause()
            self._is_playing = False
        else:
            await self._audio.play()
            self._is_playing = True
        self._emit_state()

    async def next(self) -> None:
        """Advance to the next track (wraps around). No-op on an empty library."""
        await self._step(+1)

    async def previous(self) -> None:
        """Go back to the previous track (wraps around). No-op on an empty library."""
        await self._step(-1)

    async def on_track_ended(self) -> None:
        """Called by the audio surface when a track finishes - same as next()."""
        await self._step(+1)

    async def _step(self, direction: int) -> None:
        size = len(self._repository.songs)
        if size == 0:
            return
        if self._current_index is None:
            target = self._start_index(forward=direction > 0)
        elif self._order_mode is OrderMode.SHUFFLED:
            self._ensure_queue(size)
            try:
                position = self._shuffled_queue.index(self._current_index)
            except ValueError:
                position = -1 if direction > 0 else 0
            target = self._shuffled_queue[(position + direction) % size]
        else:
            target = (self._current_index + direction) % size
        await self.play_at(target)

    def _start_index(self, forward: bool) -> int:
        size = len(self._repository.songs)
        if self._order_mode is OrderMode.SHUFFLED:
            self._ensure_queue(size)
            return self._shuffled_queue[0] if forward else self._shuffled_queue[-1]
        return 0 if forward else size - 1

    async def _load_and_play(self, song: Song, index: int) -> None:
        try:
            await self._audio.load(song)
            await self._audio.set_volume(self._volume / 100)
            await self._audio.play()
        except Exception as e:
            logger.error("Audio load failed for song %s: %s", song.id, e)
            await self._stop_with_error()
            raise PlaybackError(f"Could not play '{song.name}'", song_id=song.id) from e

        self._current_index = index
        self._current_song_id = song.id
        self._is_playing = True
        logger.debug("Now playing %s (index %d)", song.id, index)
        self._events.emit(LibraryEvent.TRACK_LOADED, song_id=song.id, loaded_at=utc_now())
        self._emit_state()

    async def _stop_with_error(self) -> None:
        if self._is_playing:
            await self._audio.pause()
        self._is_playing = False
        self._emit_state()

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    async def seek(self, fraction: float) -> None:
        """Jump to a position in the current track, as a fraction of its duration.

        No-op when idle. Seeking never counts as a play.

        Raises:
            ValidationError: fraction outside 0.0-1.0
        """
        if not 0.0 <= fraction <= 1.0:
            raise ValidationError(f"Seek position must be between 0 and 1, got {fraction}")
        if self._current_index is None:
            return
        await self._audio.seek(fraction)

    async def set_volume(self, percent: int) -> None:
        """Set the output volume (0-100). Kept for every track loaded afterwards.

        Raises:
            ValidationError: percent outside 0-100
        """
        self._volume = self._validate_volume(percent)
        await self._audio.set_volume(self._volume / 100)
        self._emit_state()

    @staticmethod
    def _validate_volume(percent: int) -> int:
        # NaN fails both comparisons too
        if not 0 <= percent <= 100:
            raise ValidationError(f"Volume must be between 0 and 100, got {percent}")
        return int(percent)

    # =========================================================================
    # ORDERING
    # =========================================================================

    def set_order_mode(self, mode: OrderMode) -> None:
        """Switch ordering. Shuffle on regenerates the queue, off discards it."""
        self._order_mode = OrderMode(mode)
        if self._order_mode is OrderMode.SHUFFLED:
            self._regenerate_queue()
        else:
            self._shuffled_queue = []
        logger.debug("Order mode set to %s", self._order_mode.value)
        self._emit_state()

    def toggle_shuffle(self) -> OrderMode:
        if self._order_mode is OrderMode.SHUFFLED:
            self.set_order_mode(OrderMode.SEQUENTIAL)
        else:
            self.set_order_mode(OrderMode.SHUFFLED)
        return self._order_mode

    def _ensure_queue(self, size: int) -> None:
        if len(self._shuffled_queue) != size:
            self._regenerate_queue()

    def _regenerate_queue(self) -> None:
        self._shuffled_queue = generate_shuffled_queue(len(self._repository.songs), self._rng)

    # =========================================================================
    # LIBRARY FOLLOW-UP
    # =========================================================================

    def _on_library_changed(self, **_: Any) -> Awaitable[None] | None:
        """Re-resolve the current song after the song collection changed.

        Returns the audio pause coroutine when the current song disappeared; the
        emitter runs it in the background.
        """
        size = len(self._repository.songs)
        if self._order_mode is OrderMode.SHUFFLED and len(self._shuffled_queue) != size:
            self._regenerate_queue()

        if self._current_song_id is None:
            return None

        index = self._repository.index_of(self._current_song_id)
        if index is None:
            logger.info("Current song %s left the library, stopping", self._current_song_id)
            was_playing = self._is_playing
            self._current_index = None
            self._current_song_id = None
            self._is_playing = False
            self._emit_state()
            return self._audio.pause() if was_playing else None

        if index != self._current_index:
            self._current_index = index
            self._emit_state()
        return None

    def _emit_state(self) -> None:
        self._events.emit(LibraryEvent.PLAYBACK_CHANGED, state=self.snapshot())
