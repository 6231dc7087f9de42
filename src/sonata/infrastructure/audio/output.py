"""Headless audio output."""

import logging

from sonata.domain.entities import Song
from sonata.domain.ports import IAudioOutput
from sonata.domain.value_objects import SongId

logger = logging.getLogger(__name__)


class NullAudioOutput(IAudioOutput):
    """Audio surface that produces no sound and only tracks what it was told.

    Used when no real audio device is attached (tests, scripted use). The
    presentation layer swaps in its own IAudioOutput for actual playback.
    """

    def __init__(self) -> None:
        self.loaded_song_id: SongId | None = None
        self.is_playing = False
        self.load_history: list[SongId] = []
        self.position = 0.0  # fraction of the track
        self.volume = 1.0

    async def load(self, song: Song) -> None:
        self.loaded_song_id = song.id
        self.is_playing = False
        self.position = 0.0
        self.load_history.append(song.id)
        logger.debug("Loaded %s (%s, %d bytes)", song.id, song.mime_type, song.size_bytes)

    async def play(self) -> None:
        if self.loaded_song_id is not None:
            self.is_playing = True

    async def pause(self) -> None:
        self.is_playing = False

    async def seek(self, fraction: float) -> None:
        if self.loaded_song_id is not None:
            self.position = fraction

    async def set_volume(self, level: float) -> None:
        self.volume = level
