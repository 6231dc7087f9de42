"""Audio adapters: file blobs for ingestion and the headless audio output."""

from sonata.infrastructure.audio.files import InMemoryAudioFile, LocalAudioFile
from sonata.infrastructure.audio.output import NullAudioOutput

__all__ = ["InMemoryAudioFile", "LocalAudioFile", "NullAudioOutput"]
