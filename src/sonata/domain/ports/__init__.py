"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from typing import Generic, Protocol, TypeVar

from sonata.domain.dtos import StorageEstimate
from sonata.domain.entities import Playlist, Song

RecordT = TypeVar("RecordT")
IdT = TypeVar("IdT")


# Hey future me, IRecordCollection is ONE durable collection (songs or playlists).
# Every method is atomic on its own collection only - nothing here can span both
# collections in one transaction, and the layers above must not pretend it can.
# Failures raise StorageError (with the original exception as .cause).
class IRecordCollection(ABC, Generic[RecordT, IdT]):
    """Durable key-value collection of records addressed by id."""

    name: str

    @abstractmethod
    async def load_all(self) -> list[RecordT]:
        """Load every record of the collection."""
        pass

    @abstractmethod
    async def put(self, record: RecordT) -> None:
        """Insert or replace a record by id (idempotent)."""
        pass

    @abstractmethod
    async def delete(self, record_id: IdT) -> None:
        """Delete a record by id; deleting an absent id is not an error."""
        pass


class IPersistentStore(ABC):
    """The persistent store: two independent collections plus housekeeping."""

    songs: "IRecordCollection[Song, object]"
    playlists: "IRecordCollection[Playlist, object]"

    @abstractmethod
    async def initialize(self) -> None:
        """Open the store. Must run exactly once before any other operation."""
        pass

    @abstractmethod
    async def clear_all(self) -> None:
        """Clear both collections (best-effort, not atomic across them)."""
        pass

    @abstractmethod
    async def estimate_usage(self) -> StorageEstimate:
        """Report used/total bytes for the quota display."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection(s)."""
        pass


# Listen, IAudioOutput is the external audio surface (a browser <audio>, a sound
# device, ...). The PlaybackEngine only tells it WHAT to do; track-end comes back
# in through PlaybackEngine.on_track_ended().
class IAudioOutput(ABC):
    """Audio surface driven by the playback engine."""

    @abstractmethod
    async def load(self, song: Song) -> None:
        """Load the song's audio payload as the current source."""
        pass

    @abstractmethod
    async def play(self) -> None:
        """Start or resume playback of the loaded source."""
        pass

    @abstractmethod
    async def pause(self) -> None:
        """Pause playback."""
        pass

    @abstractmethod
    async def seek(self, fraction: float) -> None:
        """Jump to `fraction` (0.0-1.0) of the loaded track's duration.

        Sources with an unknown duration may ignore this.
        """
        pass

    @abstractmethod
    async def set_volume(self, level: float) -> None:
        """Set output volume, 0.0 (muted) to 1.0 (full)."""
        pass


class AudioFileBlob(Protocol):
    """Shape of one raw file handed over by the file-input collaborators."""

    name: str
    mime_type: str

    async def read(self) -> bytes:
        """Return the complete file content."""
        ...


__all__ = ["AudioFileBlob", "IAudioOutput", "IPersistentStore", "IRecordCollection"]
