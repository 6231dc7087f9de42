"""Ingestion pipeline - turns uploaded audio files into library songs."""

import logging
from collections.abc import Sequence

from sonata.application.services.library_repository import LibraryRepository
from sonata.domain.dtos import OperationResult, StepFailure
from sonata.domain.entities import Song, strip_extension
from sonata.domain.exceptions import (
    DomainException,
    ValidationError,
)
from sonata.domain.ports import AudioFileBlob
from sonata.domain.value_objects import PlaylistId, SongId
from sonata.infrastructure.observability import log_operation

logger = logging.getLogger(__name__)


def is_audio_mime_type(mime_type: str) -> bool:
    return (mime_type or "").lower().startswith("audio/")


# Hey future me - batch validation happens BEFORE anything is read or written:
# one non-audio file or one unknown playlist id rejects the whole batch. After
# that, files are processed ONE AT A TIME (one decoded buffer in memory) and a
# failing file is logged + reported, never aborting the rest of the batch.
# A song whose playlist association fails is still committed - it's reported in
# both completed and failures so the caller can offer "add to playlist" again.
class IngestionPipeline:
    """Batch upload of audio files into the library."""

    def __init__(self, repository: LibraryRepository) -> None:
        self._repository = repository

    async def ingest(
        self,
        files: Sequence[AudioFileBlob],
        name_override: str | None = None,
        playlist_ids: Sequence[PlaylistId] = (),
    ) -> OperationResult:
        """Ingest a batch of audio files.

        Args:
            files: Non-empty batch of file blobs
            name_override: Display name for a single-file batch (ignored for
                multi-file batches, where every song is named after its file)
            playlist_ids: Playlists every new song is added to; the first one
                also becomes the song's primary playlist

        Returns:
            OperationResult with the ids of committed songs, or PartialFailure
            listing files that failed

        Raises:
            ValidationError: Empty batch, non-audio file, unknown playlist id,
                or empty name for a single-file upload
        """
        files = list(files)
        targets = list(dict.fromkeys(playlist_ids))
        self._validate_batch(files, name_override, targets)

        completed: list[str] = []
        failures: list[StepFailure] = []
        primary = targets[0] if targets else None

        async with log_operation(logger, "ingest_batch", files=len(files), playlists=len(targets)):
            for blob in files:
                song_id = await self._ingest_one(
                    blob, self._display_name(blob, files, name_override), primary, failures
                )
                if song_id is None:
                    continue
                completed.append(str(song_id))
                for playlist_id in targets:
                    await self._associate(song_id, playlist_id, blob.name, failures)

        result = OperationResult.from_steps("ingest", completed, failures)
        if result.ok:
            logger.info("Ingested %d songs", result.success_count)
        else:
            logger.warning(
                "Ingest finished with failures: %d songs added, %d failed steps",
                result.success_count,
                result.failure_count,
            )
        return result

    def _validate_batch(
        self,
        files: list[AudioFileBlob],
        name_override: str | None,
        targets: list[PlaylistId],
    ) -> None:
        if not files:
            raise ValidationError("No files selected")

        rejected = [blob.name for blob in files if not is_audio_mime_type(blob.mime_type)]
        if rejected:
            raise ValidationError(f"Only audio files are allowed: {', '.join(rejected)}")

        unknown = [str(pid) for pid in targets if self._repository.get_playlist(pid) is None]
        if unknown:
            raise ValidationError(f"Unknown playlists: {', '.join(unknown)}")

        if len(files) == 1 and not self._display_name(files[0], files, name_override):
            raise ValidationError("Song name cannot be empty")

    @staticmethod
    def _display_name(
        blob: AudioFileBlob, files: list[AudioFileBlob], name_override: str | None
    ) -> str:
        if len(files) == 1 and name_override and name_override.strip():
            return name_override.strip()
        return strip_extension(blob.name).strip()

    async def _ingest_one(
        self,
        blob: AudioFileBlob,
        name: str,
        primary: PlaylistId | None,
        failures: list[StepFailure],
    ) -> SongId | None:
        """Decode, build and store one song; returns its id or None on failure."""
        # Any read failure (I/O, corrupt payload, decoder) is this file's failure only
        try:
            data = await blob.read()
        except Exception as e:
            logger.warning("Could not read %s: %s", blob.name, e)
            failures.append(StepFailure("ingest.decode", blob.name, e))
            return None

        try:
            song = Song.create(name, data, blob.mime_type, primary_playlist_id=primary)
        except ValidationError as e:
            logger.warning("Rejected %s: %s", blob.name, e.message)
            failures.append(StepFailure("ingest.validate", blob.name, e))
            return None

        try:
            await self._repository.add_song(song)
        except DomainException as e:
            logger.warning("Could not store %s: %s", blob.name, e.message)
            failures.append(StepFailure("ingest.persist", blob.name, e))
            return None
        return song.id

    async def _associate(
        self,
        song_id: SongId,
        playlist_id: PlaylistId,
        file_name: str,
        failures: list[StepFailure],
    ) -> None:
        try:
            await self._repository.add_songs_to_playlist(playlist_id, [song_id])
        except DomainException as e:
            logger.warning(
                "Song %s (%s) stored but not added to playlist %s: %s",
                song_id,
                file_name,
                playlist_id,
                e.message,
            )
            failures.append(StepFailure("ingest.associate", str(song_id), e))
