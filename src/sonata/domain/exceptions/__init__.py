"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so callers (and the
    # presentation layer's notification toast) can read it without parsing
    # str(exception). Never raise this directly, always a subclass.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateEntityException(DomainException):
    """Raised when trying to create a duplicate entity."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} already exists")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidStateException(DomainException):
    """Raised when a component is in an invalid state for the requested operation.

    Example: loading the library twice, or using it before it was loaded.
    """

    pass


class ValidationError(DomainException, ValueError):
    """Input validation failed.

    Raised before any state is mutated: empty upload batch, empty song or
    playlist name, non-audio file, unknown target playlist. Never retried
    automatically.

    Also a ValueError, so entity constructors keep the usual Python contract.

    Example:
        raise ValidationError("Song name cannot be empty")
    """

    pass


class StorageError(DomainException):
    """The persistent store failed a single-collection operation.

    Hey future me - `cause` is the original driver/SQLAlchemy exception. It is
    also chained as __cause__ (we always `raise StorageError(...) from exc`).
    The caller decides whether to retry, abort or surface it.
    """

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.operation = operation  # e.g. "songs.put"


class PersistenceError(DomainException):
    """A repository write failed after the in-memory mutation was applied.

    The repository has already rolled the in-memory mutation back when this is
    raised, so memory agrees with what is durably stored.
    """

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        entity_id: Any = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.entity_id = entity_id


class PlaybackError(DomainException):
    """The playback engine could not resolve or load the target track."""

    def __init__(self, message: str, song_id: Any = None) -> None:
        super().__init__(message)
        self.song_id = song_id


class ConfigurationError(DomainException):
    """Application misconfiguration or fatal startup failure.

    Example:
        raise ConfigurationError("Persistent store already initialized")
    """

    pass


__all__ = [
    "ConfigurationError",
    "DomainException",
    "DuplicateEntityException",
    "EntityNotFoundException",
    "InvalidStateException",
    "PersistenceError",
    "PlaybackError",
    "StorageError",
    "ValidationError",
]
