"""Database models for the music coordinator.

This module defines SQLModel classes for database persistence and the pydantic
views returned by store reads.
"""

from datetime import UTC, datetime

from pydantic import BaseModel
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC)


class Intent(SQLModel, table=True):
    """Database model for a named intent.

    An intent resolves either through its own direct playlist list or through a
    referenced playlist group. The write path keeps exactly one of them set.

    Attributes:
        id: Primary key for the intent record.
        name: Unique intent name (e.g. "christmas").
        playlist: Direct playlists serialized as a JSON array, empty when a group is used.
        playlist_group: Name of the referenced playlist group, if any.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    playlist: str = ""
    # AIDEV-NOTE: Added after the first release; older databases gain it via PlaylistStore migration
    playlist_group: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Location(SQLModel, table=True):
    """Database model for a named location and its speaker.

    Attributes:
        id: Primary key for the location record.
        name: Unique location name (e.g. "garage").
        speaker_entity: Opaque actuator identifier (e.g. "media_player.garage").
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    speaker_entity: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PlaylistGroup(SQLModel, table=True):
    """Database model for a reusable, named set of playlists."""

    __tablename__ = "playlist_group"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PlaylistGroupItem(SQLModel, table=True):
    """One playlist belonging to a playlist group."""

    __tablename__ = "playlist_group_item"
    __table_args__ = (UniqueConstraint("group_name", "playlist"),)

    id: int | None = Field(default=None, primary_key=True)
    group_name: str = Field(foreign_key="playlist_group.name", index=True, ondelete="CASCADE")
    playlist: str
    created_at: datetime = Field(default_factory=utcnow)


# AIDEV-NOTE: Explicit table list keeps create_all away from tables other packages register on SQLModel.metadata
TABLES = [
    Intent.__table__,  # type: ignore[attr-defined]
    Location.__table__,  # type: ignore[attr-defined]
    PlaylistGroup.__table__,  # type: ignore[attr-defined]
    PlaylistGroupItem.__table__,  # type: ignore[attr-defined]
]


class IntentView(BaseModel):
    """Read view of an intent with its effective playlists.

    Attributes:
        id: Primary key of the intent.
        name: Intent name.
        playlist: First effective playlist, kept for single-playlist clients.
        playlists: Group members when a group is referenced, else the direct list.
        playlist_group: Referenced group name, empty when unset.
    """

    id: int
    name: str
    playlist: str = ""
    playlists: list[str] = []
    playlist_group: str = ""


class PlaylistGroupView(BaseModel):
    """Read view of a playlist group with its sorted members."""

    id: int
    name: str
    playlists: list[str] = []
