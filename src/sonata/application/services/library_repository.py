"""Library repository - the in-memory mirror of the persistent store.

Hey future me - this is the AUTHORITATIVE state the presentation layer reads.
Songs and playlists are loaded once at startup, every mutation writes through
to the store, and memory must never claim durability it doesn't have:

- Mutation applied in memory, store write fails -> mutation is undone, then
  PersistenceError is raised (carrying the StorageError).
- Playlist writes always persist the CURRENT in-memory playlist, and undo is a
  compensating action ("remove exactly the ids I added"), never a blind snapshot
  restore - other operations may have interleaved at the await.
- Deleting a song is NOT atomic with cleaning it out of the playlists (two
  independent tables). The cleanup is a saga: one independent, idempotent step
  per playlist. Failed steps are remembered in pending_cascades and reported as
  PartialFailure; retry_pending_cascades() finishes them later.
- New memberships are only accepted for songs that exist right now. Stale ids
  already inside playlists are filtered on read (playlist_members() & co drop
  ids that don't resolve) until their cascade step removes them.
"""

import logging
import unicodedata
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime

from sonata.application.events import EventEmitter, LibraryEvent
from sonata.domain.dtos import OperationResult, StepFailure
from sonata.domain.entities import Playlist, Song, utc_now
from sonata.domain.exceptions import (
    DuplicateEntityException,
    EntityNotFoundException,
    InvalidStateException,
    PersistenceError,
    StorageError,
    ValidationError,
)
from sonata.domain.ports import IPersistentStore
from sonata.domain.value_objects import PlaylistId, SongId
from sonata.infrastructure.observability import log_operation

logger = logging.getLogger(__name__)


def _name_sort_key(name: str) -> tuple[str, str, str]:
    """Case- and accent-insensitive sort key, so "Émile" sorts with the E's.

    Ties go to the accented/cased variants in codepoint order, then the raw name.
    """
    folded = name.casefold()
    # NFD splits "é" into "e" + combining accent; dropping the marks keeps the
    # base letter (non-Latin scripts stay intact, unlike an ASCII encode)
    decomposed = unicodedata.normalize("NFD", folded)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return (base, folded, name)


class LibraryRepository:
    """In-memory song/playlist collections with write-through persistence."""

    def __init__(self, store: IPersistentStore, events: EventEmitter | None = None) -> None:
        """Initialize repository.

        Args:
            store: Initialized persistent store
            events: Emitter for change notifications (a private one if omitted)
        """
        self._store = store
        self._events = events or EventEmitter()
        self._songs: list[Song] = []
        self._playlists: list[Playlist] = []
        self._loaded = False
        # song id -> playlists that still reference it after its deletion
        self._pending_cascades: dict[SongId, list[PlaylistId]] = {}
        # playlist id -> number of writes issued, to detect interleaved writes
        self._playlist_writes: dict[PlaylistId, int] = {}

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def songs(self) -> tuple[Song, ...]:
        """All songs in insertion order (read-only view)."""
        return tuple(self._songs)

    @property
    def playlists(self) -> tuple[Playlist, ...]:
        """All playlists in creation order (read-only view)."""
        return tuple(self._playlists)

    @property
    def pending_cascades(self) -> dict[SongId, list[PlaylistId]]:
        """Deleted song ids still referenced by the listed playlists."""
        return {song_id: list(ids) for song_id, ids in self._pending_cascades.items()}

    @property
    def is_consistent(self) -> bool:
        """True once every delete cascade has completed."""
        return not self._pending_cascades

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise InvalidStateException("Library not loaded yet - call load() first")

    # =========================================================================
    # LOADING & MIGRATION
    # =========================================================================

    async def load(self) -> None:
        """Load both collections from the store. Allowed once.

        Raises:
            InvalidStateException: Already loaded
            StorageError: Store read failed (memory stays empty)
        """
        if self._loaded:
            raise InvalidStateException("Library already loaded")

        songs = await self._store.songs.load_all()
        playlists = await self._store.playlists.load_all()

        # Tables have no insertion order of their own
        self._songs = sorted(songs, key=lambda s: s.date_added)
        self._playlists = sorted(playlists, key=lambda p: p.date_created)
        self._loaded = True
        self._pending_cascades = self._find_dangling_references()

        logger.info(
            "Library loaded: %d songs, %d playlists, %d unfinished cascades",
            len(self._songs),
            len(self._playlists),
            len(self._pending_cascades),
        )
        self._events.emit(LibraryEvent.SONGS_CHANGED)
        self._events.emit(LibraryEvent.PLAYLISTS_CHANGED)

    def _find_dangling_references(self) -> dict[SongId, list[PlaylistId]]:
        """Playlist references to songs that don't exist (interrupted cascades)."""
        known = {song.id for song in self._songs}
        dangling: dict[SongId, list[PlaylistId]] = {}
        for playlist in self._playlists:
            for song_id in playlist.song_ids:
                if song_id not in known:
                    dangling.setdefault(song_id, []).append(playlist.id)
        return dangling

    # Hey future me, migration for libraries created before play statistics existed:
    # play_count NULL -> 0, last_played -> None, written back one record at a time.
    # Idempotent: migrated records have a play_count, so a second run writes nothing.
    # A failed write leaves that record legacy (counted as 0 plays) until next start.
    async def migrate_statistics(self) -> int:
        """Give legacy songs statistics fields and persist them.

        Returns:
            Number of songs migrated
        """
        self._require_loaded()
        migrated = 0
        for song in [s for s in self._songs if s.needs_stats_migration]:
            upgraded = replace(song, play_count=0, last_played=None)
            try:
                await self._store.songs.put(upgraded)
            except StorageError as e:
                logger.warning("Statistics migration failed for song %s: %s", song.id, e)
                continue
            index = self._index_by_identity(self._songs, song)
            if index is not None:
                self._songs[index] = upgraded
            migrated += 1

        if migrated:
            logger.info("Migrated statistics fields for %d songs", migrated)
            self._events.emit(LibraryEvent.SONGS_CHANGED)
        return migrated

    # =========================================================================
    # SONGS
    # =========================================================================

    async def add_song(self, song: Song) -> Song:
        """Append a song and persist it.

        Raises:
            DuplicateEntityException: Song id already in the library
            PersistenceError: Store write failed (song removed again)
        """
        self._require_loaded()
        if self.index_of(song.id) is not None:
            raise DuplicateEntityException("Song", song.id)

        self._songs.append(song)
        try:
            await self._store.songs.put(song)
        except StorageError as e:
            index = self._index_by_identity(self._songs, song)
            if index is not None:
                del self._songs[index]
            raise PersistenceError(
                f"Failed to save song '{song.name}'", cause=e, entity_id=song.id
            ) from e

        logger.info("Added song %s (%s)", song.id, song.name)
        self._events.emit(LibraryEvent.SONGS_CHANGED)
        return song

    async def update_song(self, song: Song) -> Song:
        """Replace the stored song with the same id and persist it.

        Pass a modified copy (dataclasses.replace), not the stored object
        mutated in place - the previous object is what gets restored on failure.

        Raises:
            EntityNotFoundException: No song with this id
            PersistenceError: Store write failed (previous version restored)
        """
        self._require_loaded()
        index = self.index_of(song.id)
        if index is None:
            raise EntityNotFoundException("Song", song.id)

        previous = self._songs[index]
        self._songs[index] = song
        try:
            await self._store.songs.put(song)
        except StorageError as e:
            # Only undo if nobody replaced our version in the meantime
            current = self._index_by_identity(self._songs, song)
            if current is not None:
                self._songs[current] = previous
            raise PersistenceError(
                f"Failed to update song '{song.name}'", cause=e, entity_id=song.id
            ) from e

        if self.index_of(song.id) is None:
            # Deleted while our write was in flight - don't resurrect it
            try:
                await self._store.songs.delete(song.id)
            except StorageError as e:
                logger.warning("Could not re-delete song %s after update race: %s", song.id, e)
            return song

        self._events.emit(LibraryEvent.SONGS_CHANGED)
        return song

    async def rename_song(self, song_id: SongId, name: str) -> Song:
        """Rename a song.

        Raises:
            ValidationError: Empty name
        """
        if not name or not name.strip():
            raise ValidationError("Song name cannot be empty")
        current = self._require_song(song_id)
        return await self.update_song(replace(current, name=name.strip()))

    async def toggle_favorite(self, song_id: SongId) -> Song:
        """Flip the favorite flag of a song."""
        current = self._require_song(song_id)
        return await self.update_song(replace(current, is_favorite=not current.is_favorite))

    async def record_play(self, song_id: SongId, played_at: datetime | None = None) -> Song:
        """Count one play of a song and stamp last_played."""
        current = self._require_song(song_id)
        updated = replace(
            current,
            play_count=current.plays + 1,
            last_played=played_at or utc_now(),
        )
        return await self.update_song(updated)

    async def delete_song(self, song_id: SongId) -> OperationResult:
        """Delete a song, then strip it from every playlist that references it.

        The song delete itself is all-or-nothing. The playlist cleanup runs one
        step per playlist afterwards; failed steps don't stop the others and are
        returned as a PartialFailure (and kept for retry_pending_cascades()).

        Raises:
            EntityNotFoundException: No song with this id
            PersistenceError: The song itself could not be deleted (nothing changed)
        """
        self._require_loaded()
        index = self.index_of(song_id)
        if index is None:
            raise EntityNotFoundException("Song", song_id)

        async with log_operation(logger, "delete_song", song_id=str(song_id)):
            song = self._songs.pop(index)
            try:
                await self._store.songs.delete(song_id)
            except StorageError as e:
                self._songs.insert(min(index, len(self._songs)), song)
                raise PersistenceError(
                    f"Failed to delete song '{song.name}'", cause=e, entity_id=song_id
                ) from e
            self._events.emit(LibraryEvent.SONGS_CHANGED)

            affected = [p.id for p in self._playlists if p.contains(song_id)]
            if affected:
                self._pending_cascades[song_id] = affected
            completed, failures = await self._run_cascade(song_id)

        return OperationResult.from_steps("delete_song", completed, failures)

    async def retry_pending_cascades(self) -> OperationResult:
        """Re-run every unfinished delete cascade step."""
        self._require_loaded()
        completed: list[str] = []
        failures: list[StepFailure] = []
        for song_id in list(self._pending_cascades):
            done, failed = await self._run_cascade(song_id)
            completed.extend(done)
            failures.extend(failed)
        if completed or failures:
            logger.info(
                "Retried delete cascades: %d steps done, %d still failing",
                len(completed),
                len(failures),
            )
        return OperationResult.from_steps("retry_cascades", completed, failures)

    async def _run_cascade(self, song_id: SongId) -> tuple[list[str], list[StepFailure]]:
        """Strip `song_id` from each pending playlist; each step independent."""
        completed: list[str] = []
        failures: list[StepFailure] = []
        remaining: list[PlaylistId] = []

        for playlist_id in list(self._pending_cascades.get(song_id, [])):
            playlist = self.get_playlist(playlist_id)
            if playlist is None or not playlist.contains(song_id):
                # Playlist deleted or already clean - step is done
                completed.append(str(playlist_id))
                continue
            try:
                await self._remove_membership(playlist, song_id)
            except PersistenceError as e:
                logger.warning(
                    "Cascade step failed: song %s still in playlist %s: %s",
                    song_id,
                    playlist_id,
                    e.message,
                )
                failures.append(StepFailure("cascade.playlist", str(playlist_id), e))
                remaining.append(playlist_id)
            else:
                completed.append(str(playlist_id))

        if remaining:
            self._pending_cascades[song_id] = remaining
            self._events.emit(
                LibraryEvent.CASCADE_INCOMPLETE, song_id=song_id, playlist_ids=list(remaining)
            )
        else:
            self._pending_cascades.pop(song_id, None)
        if completed:
            self._events.emit(LibraryEvent.PLAYLISTS_CHANGED)
        return completed, failures

    # =========================================================================
    # PLAYLISTS
    # =========================================================================

    async def create_playlist(self, playlist: Playlist) -> Playlist:
        """Add a playlist and persist it.

        Raises:
            DuplicateEntityException: Playlist id already exists
            PersistenceError: Store write failed (playlist removed again)
        """
        self._require_loaded()
        if self.get_playlist(playlist.id) is not None:
            raise DuplicateEntityException("Playlist", playlist.id)

        self._playlists.append(playlist)
        try:
            await self._store.playlists.put(playlist)
        except StorageError as e:
            index = self._index_by_identity(self._playlists, playlist)
            if index is not None:
                del self._playlists[index]
            raise PersistenceError(
                f"Failed to create playlist '{playlist.name}'", cause=e, entity_id=playlist.id
            ) from e

        logger.info("Created playlist %s (%s)", playlist.id, playlist.name)
        self._events.emit(LibraryEvent.PLAYLISTS_CHANGED)
        return playlist

    async def delete_playlist(self, playlist_id: PlaylistId) -> None:
        """Delete a playlist. Its songs stay in the library.

        Raises:
            EntityNotFoundException: No playlist with this id
            PersistenceError: Store delete failed (playlist restored)
        """
        self._require_loaded()
        index = self._playlist_index(playlist_id)
        if index is None:
            raise EntityNotFoundException("Playlist", playlist_id)

        playlist = self._playlists.pop(index)
        try:
            await self._store.playlists.delete(playlist_id)
        except StorageError as e:
            self._playlists.insert(min(index, len(self._playlists)), playlist)
            raise PersistenceError(
                f"Failed to delete playlist '{playlist.name}'", cause=e, entity_id=playlist_id
            ) from e

        for song_id in list(self._pending_cascades):
            remaining = [pid for pid in self._pending_cascades[song_id] if pid != playlist_id]
            if remaining:
                self._pending_cascades[song_id] = remaining
            else:
                del self._pending_cascades[song_id]

        logger.info("Deleted playlist %s (%s)", playlist_id, playlist.name)
        self._events.emit(LibraryEvent.PLAYLISTS_CHANGED)

    async def add_songs_to_playlist(
        self, playlist_id: PlaylistId, song_ids: Iterable[SongId]
    ) -> list[SongId]:
        """Append songs to a playlist, skipping ids already present.

        Ids that don't resolve to a song in the library are skipped too. A song
        deleted while this call was waiting must not slip back into a playlist
        after its delete cascade has already run.

        Returns:
            The ids actually added (empty -> nothing changed, nothing written)

        Raises:
            EntityNotFoundException: No playlist with this id
            PersistenceError: Store write failed (added ids removed again)
        """
        self._require_loaded()
        playlist = self._require_playlist(playlist_id)
        requested = list(song_ids)
        known = [song_id for song_id in requested if self.index_of(song_id) is not None]
        if len(known) < len(requested):
            logger.info(
                "Skipped %d unknown song(s) for playlist %s",
                len(requested) - len(known),
                playlist_id,
            )
        added = playlist.add_songs(known)
        if not added:
            return []

        def _undo(current: Playlist) -> None:
            for song_id in added:
                current.remove_song(song_id)

        await self._persist_playlist(playlist_id, _undo)
        self._events.emit(LibraryEvent.PLAYLISTS_CHANGED)
        return added

    async def remove_song_from_playlist(self, playlist_id: PlaylistId, song_id: SongId) -> bool:
        """Remove one song from a playlist.

        Returns:
            False if the song wasn't in the playlist (nothing written)

        Raises:
            EntityNotFoundException: No playlist with this id
            PersistenceError: Store write failed (song put back)
        """
        self._require_loaded()
        playlist = self._require_playlist(playlist_id)
        if not playlist.contains(song_id):
            return False
        await self._remove_membership(playlist, song_id)
        self._events.emit(LibraryEvent.PLAYLISTS_CHANGED)
        return True

    async def _remove_membership(self, playlist: Playlist, song_id: SongId) -> None:
        position = playlist.song_ids.index(song_id)
        playlist.song_ids.pop(position)

        def _undo(current: Playlist) -> None:
            if not current.contains(song_id):
                current.song_ids.insert(min(position, len(current.song_ids)), song_id)

        await self._persist_playlist(playlist.id, _undo)

    async def _persist_playlist(
        self, playlist_id: PlaylistId, undo: Callable[[Playlist], None]
    ) -> None:
        """Write the current in-memory version of a playlist; compensate on failure."""
        playlist = self.get_playlist(playlist_id)
        if playlist is None:
            return
        sequence = self._playlist_writes.get(playlist_id, 0) + 1
        self._playlist_writes[playlist_id] = sequence
        try:
            await self._store.playlists.put(playlist)
        except StorageError as e:
            current = self.get_playlist(playlist_id)
            if current is not None:
                undo(current)
                if self._playlist_writes.get(playlist_id) != sequence:
                    # A later write captured our change before the undo
                    await self._rewrite_playlist(current)
            raise PersistenceError(
                f"Failed to save playlist '{playlist.name}'", cause=e, entity_id=playlist_id
            ) from e

    async def _rewrite_playlist(self, playlist: Playlist) -> None:
        self._playlist_writes[playlist.id] = self._playlist_writes.get(playlist.id, 0) + 1
        try:
            await self._store.playlists.put(playlist)
        except StorageError as e:
            logger.warning("Could not re-sync playlist %s after failed write: %s", playlist.id, e)

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    async def clear_all(self) -> None:
        """Delete every song and playlist.

        Raises:
            PersistenceError: Store clear failed; memory was re-synced from the
                store, which may have cleared one collection but not the other
        """
        self._require_loaded()
        try:
            await self._store.clear_all()
        except StorageError as e:
            await self._resync_after_failed_clear()
            raise PersistenceError("Failed to clear the library", cause=e) from e

        self._songs.clear()
        self._playlists.clear()
        self._pending_cascades.clear()
        logger.info("Library cleared")
        self._events.emit(LibraryEvent.LIBRARY_CLEARED)
        self._events.emit(LibraryEvent.SONGS_CHANGED)
        self._events.emit(LibraryEvent.PLAYLISTS_CHANGED)

    async def _resync_after_failed_clear(self) -> None:
        try:
            songs = await self._store.songs.load_all()
            playlists = await self._store.playlists.load_all()
        except StorageError as e:
            logger.error("Could not re-sync library after failed clear: %s", e)
            return
        self._songs = sorted(songs, key=lambda s: s.date_added)
        self._playlists = sorted(playlists, key=lambda p: p.date_created)
        self._pending_cascades = self._find_dangling_references()
        self._events.emit(LibraryEvent.SONGS_CHANGED)
        self._events.emit(LibraryEvent.PLAYLISTS_CHANGED)

    # =========================================================================
    # QUERIES (read-only, in memory)
    # =========================================================================

    def get_song(self, song_id: SongId) -> Song | None:
        index = self.index_of(song_id)
        return self._songs[index] if index is not None else None

    def index_of(self, song_id: SongId) -> int | None:
        """Position of a song in the collection (the playback engine's index)."""
        for index, song in enumerate(self._songs):
            if song.id == song_id:
                return index
        return None

    def get_playlist(self, playlist_id: PlaylistId) -> Playlist | None:
        index = self._playlist_index(playlist_id)
        return self._playlists[index] if index is not None else None

    def search_songs(self, text: str, songs: Iterable[Song] | None = None) -> list[Song]:
        """Case-insensitive substring match on the song name."""
        pool = list(self._songs if songs is None else songs)
        needle = (text or "").strip().casefold()
        if not needle:
            return pool
        return [song for song in pool if needle in song.name.casefold()]

    def favorite_songs(self, songs: Iterable[Song] | None = None) -> list[Song]:
        pool = self._songs if songs is None else songs
        return [song for song in pool if song.is_favorite]

    @staticmethod
    def sort_by_name(songs: Iterable[Song]) -> list[Song]:
        """Locale-aware ascending sort by name."""
        return sorted(songs, key=lambda song: _name_sort_key(song.name))

    def sorted_playlists(self) -> list[Playlist]:
        return sorted(self._playlists, key=lambda p: _name_sort_key(p.name))

    def playlist_members(self, playlist_id: PlaylistId) -> list[Song]:
        """Songs of a playlist in playlist order; ids that don't resolve are dropped.

        Raises:
            EntityNotFoundException: No playlist with this id
        """
        playlist = self._require_playlist(playlist_id)
        by_id = {song.id: song for song in self._songs}
        return [by_id[song_id] for song_id in playlist.song_ids if song_id in by_id]

    def member_count(self, playlist_id: PlaylistId) -> int:
        """Number of resolvable songs in a playlist."""
        return len(self.playlist_members(playlist_id))

    def playlists_containing(self, song_id: SongId) -> list[Playlist]:
        return [p for p in self._playlists if p.contains(song_id)]

    def available_songs_for(self, playlist_id: PlaylistId) -> list[Song]:
        """Songs not yet in the playlist, sorted by name (for the "add songs" picker)."""
        playlist = self._require_playlist(playlist_id)
        return self.sort_by_name(s for s in self._songs if not playlist.contains(s.id))

    def primary_playlist_of(self, song: Song) -> Playlist | None:
        """Resolve the legacy single-playlist link for display; None if gone."""
        if song.primary_playlist_id is None:
            return None
        return self.get_playlist(song.primary_playlist_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_song(self, song_id: SongId) -> Song:
        song = self.get_song(song_id)
        if song is None:
            raise EntityNotFoundException("Song", song_id)
        return song

    def _require_playlist(self, playlist_id: PlaylistId) -> Playlist:
        playlist = self.get_playlist(playlist_id)
        if playlist is None:
            raise EntityNotFoundException("Playlist", playlist_id)
        return playlist

    def _playlist_index(self, playlist_id: PlaylistId) -> int | None:
        for index, playlist in enumerate(self._playlists):
            if playlist.id == playlist_id:
                return index
        return None

    @staticmethod
    def _index_by_identity(items: list, target: object) -> int | None:  # type: ignore[type-arg]
        for index, item in enumerate(items):
            if item is target:
                return index
        return None
