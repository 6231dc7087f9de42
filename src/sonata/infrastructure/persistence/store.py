"""SQLAlchemy implementation of the persistent store.

Hey future me - this is the ONLY place that talks SQL. Every public operation
runs in its own session_scope() (= one transaction on one table), lock errors
are retried, and anything SQLAlchemy/OS throws comes out as StorageError with
the original exception attached. Nothing here spans both tables atomically.
"""

import asyncio
import logging
import shutil
from abc import abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sonata.domain.dtos import StorageEstimate
from sonata.domain.entities import Genre, Mood, Playlist, Song, TimeOfDay
from sonata.domain.exceptions import ConfigurationError, StorageError
from sonata.domain.ports import IPersistentStore, IRecordCollection
from sonata.domain.value_objects import PlaylistId, SongId
from sonata.infrastructure.persistence.database import Database
from sonata.infrastructure.persistence.models import (
    Base,
    PlaylistModel,
    SongModel,
    ensure_utc_aware,
)
from sonata.infrastructure.persistence.retry import execute_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")
EntityT = TypeVar("EntityT")
IdT = TypeVar("IdT", SongId, PlaylistId)
ModelT = TypeVar("ModelT", bound=Base)


class SqlAlchemyCollection(IRecordCollection[EntityT, IdT], Generic[EntityT, IdT, ModelT]):
    """One table exposed as a record collection."""

    name: str
    model: type[ModelT]

    def __init__(self, store: "SqlAlchemyPersistentStore") -> None:
        self._store = store

    @abstractmethod
    def _to_model(self, entity: EntityT) -> ModelT:
        """Convert entity to ORM model."""

    @abstractmethod
    def _to_entity(self, model: ModelT) -> EntityT:
        """Convert ORM model to entity."""

    async def load_all(self) -> list[EntityT]:
        """Load every record; rows that no longer validate are skipped and logged."""

        async def _load(session: AsyncSession) -> list[ModelT]:
            result = await session.execute(select(self.model))
            return list(result.scalars().all())

        models = await self._store.run(f"{self.name}.load_all", _load)
        entities: list[EntityT] = []
        for model in models:
            try:
                entities.append(self._to_entity(model))
            except ValueError as e:
                logger.error(
                    "Skipping unreadable %s record %s: %s", self.name, model.id, e
                )
        return entities

    async def put(self, record: EntityT) -> None:
        """Insert or replace a record by primary key."""
        model = self._to_model(record)

        async def _put(session: AsyncSession) -> None:
            await session.merge(model)

        await self._store.run(f"{self.name}.put", _put)

    async def delete(self, record_id: IdT) -> None:
        """Delete a record; absent ids are ignored."""

        async def _delete(session: AsyncSession) -> None:
            await session.execute(delete(self.model).where(self.model.id == str(record_id)))  # type: ignore[attr-defined]

        await self._store.run(f"{self.name}.delete", _delete)

    async def clear(self) -> None:
        """Delete every record of this collection."""

        async def _clear(session: AsyncSession) -> None:
            await session.execute(delete(self.model))

        await self._store.run(f"{self.name}.clear", _clear)


class SongCollection(SqlAlchemyCollection[Song, SongId, SongModel]):
    """The `songs` table."""

    name = "songs"
    model = SongModel

    def _to_model(self, entity: Song) -> SongModel:
        return SongModel(
            id=str(entity.id),
            name=entity.name,
            audio_data=entity.audio_data,
            mime_type=entity.mime_type,
            size_bytes=entity.size_bytes,
            date_added=entity.date_added,
            primary_playlist_id=(
                str(entity.primary_playlist_id) if entity.primary_playlist_id else None
            ),
            is_favorite=entity.is_favorite,
            play_count=entity.play_count,
            last_played=entity.last_played,
        )

    def _to_entity(self, model: SongModel) -> Song:
        return Song(
            id=SongId.from_string(model.id),
            name=model.name,
            audio_data=bytes(model.audio_data),
            mime_type=model.mime_type,
            size_bytes=model.size_bytes,
            date_added=ensure_utc_aware(model.date_added),  # type: ignore[arg-type]
            primary_playlist_id=(
                PlaylistId.from_string(model.primary_playlist_id)
                if model.primary_playlist_id
                else None
            ),
            is_favorite=bool(model.is_favorite),
            play_count=model.play_count,
            last_played=ensure_utc_aware(model.last_played),
        )


class PlaylistCollection(SqlAlchemyCollection[Playlist, PlaylistId, PlaylistModel]):
    """The `playlists` table."""

    name = "playlists"
    model = PlaylistModel

    def _to_model(self, entity: Playlist) -> PlaylistModel:
        return PlaylistModel(
            id=str(entity.id),
            name=entity.name,
            genre=entity.genre.value,
            mood=entity.mood.value if entity.mood else None,
            time_of_day=entity.time_of_day.value if entity.time_of_day else None,
            song_ids=[str(song_id) for song_id in entity.song_ids],
            date_created=entity.date_created,
        )

    def _to_entity(self, model: PlaylistModel) -> Playlist:
        return Playlist(
            id=PlaylistId.from_string(model.id),
            name=model.name,
            genre=Genre(model.genre),
            mood=Mood(model.mood) if model.mood else None,
            time_of_day=TimeOfDay(model.time_of_day) if model.time_of_day else None,
            song_ids=[SongId.from_string(value) for value in model.song_ids or []],
            date_created=ensure_utc_aware(model.date_created),  # type: ignore[arg-type]
        )


class SqlAlchemyPersistentStore(IPersistentStore):
    """Persistent store backed by an async SQLAlchemy engine (SQLite by default)."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._initialized = False
        db_settings = database.settings.database
        self._retry_attempts = db_settings.lock_retry_attempts
        self._retry_delay = db_settings.lock_retry_base_delay
        self.songs: SongCollection = SongCollection(self)
        self.playlists: PlaylistCollection = PlaylistCollection(self)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create the tables. Allowed exactly once per store instance.

        Raises:
            ConfigurationError: Store already initialized
            StorageError: Tables could not be created (fatal for the app)
        """
        if self._initialized:
            raise ConfigurationError("Persistent store already initialized")
        try:
            await self._db.create_tables()
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(
                f"Failed to initialize persistent store: {e}", cause=e, operation="initialize"
            ) from e
        self._initialized = True
        logger.info("Persistent store initialized")

    async def run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run `work` inside one transaction, with lock retries and error wrapping."""
        if not self._initialized:
            raise StorageError(
                f"Persistent store not initialized (operation: {operation})",
                operation=operation,
            )

        async def _attempt() -> T:
            async with self._db.session_scope() as session:
                return await work(session)

        try:
            return await execute_with_retry(
                _attempt,
                max_attempts=self._retry_attempts,
                initial_delay=self._retry_delay,
                description=operation,
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error("Storage operation %s failed: %s", operation, e)
            raise StorageError(
                f"Storage operation {operation} failed: {e}", cause=e, operation=operation
            ) from e

    async def clear_all(self) -> None:
        """Clear both collections, each in its own transaction.

        Every collection is attempted even if an earlier one failed.

        Raises:
            StorageError: At least one collection could not be cleared
        """
        errors: list[StorageError] = []
        for collection in (self.songs, self.playlists):
            try:
                await collection.clear()
            except StorageError as e:
                errors.append(e)
        if errors:
            failed = ", ".join(e.operation or "?" for e in errors)
            raise StorageError(
                f"Failed to clear: {failed}", cause=errors[0].cause, operation="clear_all"
            ) from errors[0]
        logger.info("Persistent store cleared")

    async def estimate_usage(self) -> StorageEstimate:
        """Sum of stored audio bytes and the capacity of the database volume."""

        async def _sum(session: AsyncSession) -> int:
            result = await session.execute(
                select(func.coalesce(func.sum(SongModel.size_bytes), 0))
            )
            return int(result.scalar() or 0)

        used = await self.run("songs.estimate_usage", _sum)
        total: int | None = None
        db_path = self._db.settings._get_sqlite_db_path()
        if db_path is not None:
            directory = db_path.parent if str(db_path.parent) else db_path
            try:
                usage: Any = await asyncio.to_thread(shutil.disk_usage, directory)
                total = int(usage.total)
            except OSError as e:
                logger.debug("Could not read disk usage for %s: %s", directory, e)
        return StorageEstimate(used_bytes=used, total_bytes=total)

    async def close(self) -> None:
        """Dispose the engine."""
        await self._db.close()
