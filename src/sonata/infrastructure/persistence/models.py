"""SQLAlchemy ORM models for Sonata."""

from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, Integer, LargeBinary, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! UTC datetimes come back
# "naive". ALWAYS pass values read from the DB through this before comparing them
# with datetime.now(UTC), or you get "can't compare offset-naive and offset-aware".
def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Listen up, there is deliberately NO foreign key between songs and playlists.
# They are two independent collections: a write touches exactly one table, and
# the song->playlist cleanup after a delete is done by the repository step by step.
class SongModel(Base):
    """SQLAlchemy model for the Song collection.

    play_count/last_played are nullable: NULL play_count marks a record written
    before statistics existed (picked up by the startup migration).
    """

    __tablename__ = "songs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    audio_data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    date_added: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    # Legacy single-playlist link (display only, not membership)
    primary_playlist_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_favorite: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="0", default=False
    )
    play_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_played: Mapped[datetime | None] = mapped_column(nullable=True)


class PlaylistModel(Base):
    """SQLAlchemy model for the Playlist collection.

    Hey future me - song_ids is a JSON array ON the playlist row (ordered, no
    duplicates). Membership changes are a single-row write in a single table.
    """

    __tablename__ = "playlists"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    genre: Mapped[str] = mapped_column(String(20), nullable=False)
    mood: Mapped[str | None] = mapped_column(String(20), nullable=True)
    time_of_day: Mapped[str | None] = mapped_column(String(20), nullable=True)
    song_ids: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    date_created: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
