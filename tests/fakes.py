"""In-memory test doubles and entity builders.

Hey future me - FakeStore is an in-memory IPersistentStore with failure
injection: `store.playlists.fail("put", playlist.id)` makes the NEXT put of that
playlist raise StorageError. Like the real SQLAlchemy store, put() snapshots the
record synchronously and only "commits" after an await point, so interleavings
between concurrent repository operations behave the same way.
"""

import asyncio
import copy
from collections import Counter
from typing import Any

from sonata.domain.dtos import StorageEstimate
from sonata.domain.entities import Genre, Playlist, Song
from sonata.domain.exceptions import StorageError
from sonata.domain.ports import IPersistentStore, IRecordCollection


class FakeCollection(IRecordCollection[Any, Any]):
    """Dict-backed record collection with per-call failure injection."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.records: dict[Any, Any] = {}
        self.calls: Counter[str] = Counter()
        self._failures: Counter[tuple[str, Any]] = Counter()

    def fail(self, operation: str, record_id: Any = None, times: int = 1) -> None:
        """Make the next `times` calls of `operation` (for `record_id`, or any) fail."""
        self._failures[(operation, record_id)] += times

    def _maybe_fail(self, operation: str, record_id: Any = None) -> None:
        for key in ((operation, record_id), (operation, None)):
            if self._failures[key] > 0:
                self._failures[key] -= 1
                raise StorageError(
                    f"{self.name}.{operation} failed: disk I/O error",
                    cause=OSError("disk I/O error"),
                    operation=f"{self.name}.{operation}",
                )

    async def load_all(self) -> list[Any]:
        self.calls["load_all"] += 1
        await asyncio.sleep(0)
        self._maybe_fail("load_all")
        return [copy.deepcopy(record) for record in self.records.values()]

    async def put(self, record: Any) -> None:
        self.calls["put"] += 1
        snapshot = copy.deepcopy(record)
        await asyncio.sleep(0)
        self._maybe_fail("put", record.id)
        self.records[record.id] = snapshot

    async def delete(self, record_id: Any) -> None:
        self.calls["delete"] += 1
        await asyncio.sleep(0)
        self._maybe_fail("delete", record_id)
        self.records.pop(record_id, None)

    async def clear(self) -> None:
        self.calls["clear"] += 1
        await asyncio.sleep(0)
        self._maybe_fail("clear")
        self.records.clear()


class FakeStore(IPersistentStore):
    """In-memory persistent store for repository and service tests."""

    def __init__(self) -> None:
        self.songs = FakeCollection("songs")
        self.playlists = FakeCollection("playlists")
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def clear_all(self) -> None:
        errors: list[StorageError] = []
        for collection in (self.songs, self.playlists):
            try:
                await collection.clear()
            except StorageError as e:
                errors.append(e)
        if errors:
            raise StorageError("clear failed", cause=errors[0].cause, operation="clear_all")

    async def estimate_usage(self) -> StorageEstimate:
        return StorageEstimate(used_bytes=sum(s.size_bytes for s in self.songs.records.values()))

    async def close(self) -> None:
        self.closed = True


def make_song(name: str = "Song", data: bytes = b"\x00\x01\x02", **overrides: Any) -> Song:
    """Build a song with a fresh id."""
    song = Song.create(name, data, overrides.pop("mime_type", "audio/mpeg"))
    for field_name, value in overrides.items():
        setattr(song, field_name, value)
    return song


def make_playlist(name: str = "Study", genre: Genre = Genre.CLASSICAL, **kwargs: Any) -> Playlist:
    return Playlist.create(name, genre, **kwargs)
