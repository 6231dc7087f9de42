"""Infrastructure persistence layer."""

from .database import Database
from .models import Base, PlaylistModel, SongModel
from .retry import execute_with_retry, is_lock_error
from .store import (
    PlaylistCollection,
    SongCollection,
    SqlAlchemyCollection,
    SqlAlchemyPersistentStore,
)

__all__ = [
    # Database
    "Database",
    "Base",
    # Models
    "SongModel",
    "PlaylistModel",
    # Store
    "SqlAlchemyPersistentStore",
    "SqlAlchemyCollection",
    "SongCollection",
    "PlaylistCollection",
    # Retry utilities
    "execute_with_retry",
    "is_lock_error",
]
