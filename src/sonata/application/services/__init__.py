"""Application services."""

from sonata.application.services.ingestion_service import IngestionPipeline
from sonata.application.services.library_repository import LibraryRepository
from sonata.application.services.playback_engine import (
    PlaybackEngine,
    PlaybackState,
    generate_shuffled_queue,
)
from sonata.application.services.stats_service import PlayTrends, StatisticsTracker

__all__ = [
    "IngestionPipeline",
    "LibraryRepository",
    "PlayTrends",
    "PlaybackEngine",
    "PlaybackState",
    "StatisticsTracker",
    "generate_shuffled_queue",
]
