"""Library lifecycle: startup wiring and shutdown cleanup.

    async with open_library() as library:
        result = await library.ingestion.ingest([LocalAudioFile(path)])
        await library.engine.play_song(SongId.from_string(result.completed[0]))
"""

import logging
import random
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sonata.application.events import EventEmitter
from sonata.application.services import (
    IngestionPipeline,
    LibraryRepository,
    PlaybackEngine,
    StatisticsTracker,
)
from sonata.config import Settings, get_settings
from sonata.domain.entities import OrderMode
from sonata.domain.exceptions import ConfigurationError
from sonata.domain.ports import IAudioOutput
from sonata.infrastructure.audio import NullAudioOutput
from sonata.infrastructure.observability import configure_logging
from sonata.infrastructure.persistence import Database, SqlAlchemyPersistentStore

logger = logging.getLogger(__name__)


# Hey future me, this validates the SQLite path BEFORE the engine is created. SQLite
# needs to create -journal/-wal/-shm files next to the .db file, so the directory
# must exist AND be writable. We don't pre-create the .db file - SQLite does that.
# Returns early for in-memory and non-SQLite URLs.
def _validate_sqlite_path(settings: Settings) -> None:
    """Ensure the SQLite database directory exists and is writable."""
    db_path = settings._get_sqlite_db_path()
    if db_path is None:
        return

    try:
        if db_path.parent and str(db_path.parent) != ".":
            db_path.parent.mkdir(parents=True, exist_ok=True)
            logger.debug("Ensured SQLite parent directory exists: %s", db_path.parent)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{db_path.parent}': {exc}. "
            "Update SONATA_DATABASE__URL or adjust directory permissions."
        ) from exc

    try:
        test_file = db_path.parent / f".{db_path.stem}_write_test"
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write files in database directory '{db_path.parent}': {exc}. "
            "SQLite requires write permissions to create database and journal files."
        ) from exc


@dataclass
class Library:
    """Everything a running library consists of, wired together."""

    settings: Settings
    database: Database
    store: SqlAlchemyPersistentStore
    events: EventEmitter
    repository: LibraryRepository
    engine: PlaybackEngine
    stats: StatisticsTracker
    ingestion: IngestionPipeline


# Listen future me - everything before `yield` is STARTUP, everything after is
# SHUTDOWN, and the finally makes sure the database is closed even when startup
# blows up half-way. A store that can't initialize is FATAL (re-raised), while
# migration and unfinished cascades are best-effort and only logged.
@asynccontextmanager
async def open_library(
    settings: Settings | None = None,
    audio_output: IAudioOutput | None = None,
    configure_logs: bool = True,
) -> AsyncGenerator[Library, None]:
    """Open the library: store, repository, engine, statistics and ingestion.

    Args:
        settings: Settings to use (cached env settings if omitted)
        audio_output: Audio surface for the engine (silent NullAudioOutput if omitted)
        configure_logs: Set up root logging (turn off when the host app already did)

    Yields:
        The wired Library

    Raises:
        ConfigurationError: Database directory unusable or store initialized twice
        StorageError: Store could not be initialized or loaded
    """
    settings = settings or get_settings()
    if configure_logs:
        configure_logging(
            log_level=settings.log_level,
            json_format=settings.observability.log_json_format,
            app_name=settings.app_name,
        )
    logger.info("Opening library: %s", settings.app_name)

    _validate_sqlite_path(settings)
    database = Database(settings)
    store = SqlAlchemyPersistentStore(database)
    events = EventEmitter()
    engine: PlaybackEngine | None = None
    stats: StatisticsTracker | None = None
    try:
        try:
            await store.initialize()
        except Exception as e:
            logger.critical("Persistent store unavailable, cannot start: %s", e)
            raise

        repository = LibraryRepository(store, events)
        await repository.load()
        await repository.migrate_statistics()
        if not repository.is_consistent:
            result = await repository.retry_pending_cascades()
            if not result.ok:
                logger.warning("Library still has unfinished cascades: %s", result.failed_ids)

        library_settings = settings.library
        engine = PlaybackEngine(
            repository,
            audio_output or NullAudioOutput(),
            events,
            rng=random.Random(library_settings.shuffle_seed),
            order_mode=OrderMode(library_settings.default_order_mode),
            volume=library_settings.default_volume,
        )
        stats = StatisticsTracker(repository, events, top_n=library_settings.stats_top_n)
        ingestion = IngestionPipeline(repository)
        logger.info("Library ready: %d songs", len(repository.songs))

        yield Library(
            settings=settings,
            database=database,
            store=store,
            events=events,
            repository=repository,
            engine=engine,
            stats=stats,
            ingestion=ingestion,
        )
    finally:
        logger.info("Closing library")
        await events.drain()
        if engine is not None:
            engine.close()
        if stats is not None:
            stats.close()
        await store.close()
        logger.info("Library closed")
