"""File blobs handed to the ingestion pipeline.

Both classes satisfy the AudioFileBlob port: a name, a MIME type and an async
read() that returns the full content. Reading is lazy, so a batch of files
only holds one decoded buffer at a time while the pipeline walks it.
"""

import asyncio
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path

# mimetypes misses a few common audio containers on minimal systems
_EXTRA_AUDIO_TYPES = {
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    ".ogg": "audio/ogg",
    ".opus": "audio/opus",
    ".wav": "audio/wav",
}


def guess_mime_type(filename: str) -> str:
    """Guess a MIME type from the file extension ("" if unknown)."""
    suffix = Path(filename).suffix.lower()
    if suffix in _EXTRA_AUDIO_TYPES:
        return _EXTRA_AUDIO_TYPES[suffix]
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or ""


@dataclass
class InMemoryAudioFile:
    """A blob whose bytes are already in memory (e.g. from a drop event)."""

    name: str
    data: bytes = field(repr=False)
    mime_type: str = ""

    def __post_init__(self) -> None:
        if not self.mime_type:
            self.mime_type = guess_mime_type(self.name)

    @property
    def size(self) -> int:
        return len(self.data)

    async def read(self) -> bytes:
        return self.data


@dataclass
class LocalAudioFile:
    """A blob backed by a file on disk; read off the event loop thread."""

    path: Path
    mime_type: str = ""
    name: str = ""

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        if not self.name:
            self.name = self.path.name
        if not self.mime_type:
            self.mime_type = guess_mime_type(self.name)

    async def read(self) -> bytes:
        return await asyncio.to_thread(self.path.read_bytes)
