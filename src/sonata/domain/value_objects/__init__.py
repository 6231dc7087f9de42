"""Value objects for the library domain."""

import uuid
from dataclasses import dataclass


# Hey future me, ids are random UUID4 strings (122 random bits). Two songs created
# in the same millisecond of a batch upload still get different ids, which a bare
# timestamp can't promise. Stored ids from older libraries may be any non-empty
# string (timestamps, etc.), so from_string() accepts those as-is.
@dataclass(frozen=True)
class _EntityId:
    """Opaque, hashable entity identifier."""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValueError(f"{type(self).__name__} cannot be empty")

    @classmethod
    def generate(cls) -> "_EntityId":
        """Create a new collision-resistant id."""
        return cls(str(uuid.uuid4()))

    @classmethod
    def from_string(cls, value: str) -> "_EntityId":
        """Wrap a stored id."""
        return cls(value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SongId(_EntityId):
    """Song identifier."""

    @classmethod
    def generate(cls) -> "SongId":
        return cls(str(uuid.uuid4()))

    @classmethod
    def from_string(cls, value: str) -> "SongId":
        return cls(value)


@dataclass(frozen=True)
class PlaylistId(_EntityId):
    """Playlist identifier."""

    @classmethod
    def generate(cls) -> "PlaylistId":
        return cls(str(uuid.uuid4()))

    @classmethod
    def from_string(cls, value: str) -> "PlaylistId":
        return cls(value)


__all__ = ["PlaylistId", "SongId"]
