"""Message models exchanged with the broker and with synchronous callers.

This module defines the inbound play request, the outbound play-media command
understood by Home Assistant, and the structured response returned by the
coordinator's collaborator interface.
"""

from typing import Any, Literal, NamedTuple

from pydantic import BaseModel

# AIDEV-NOTE: Topic names are part of the external contract, not configuration
PLAY_TOPIC = "music-coordinator/play"
COMMAND_TOPIC = "homeassistant/service/mass/play_media"

MEDIA_PLAYER_PREFIX = "media_player."


class PlayRequest(BaseModel):
    """Inbound request to play an intent at a location.

    Attributes:
        intent: Name of the intent to resolve to a playlist (e.g. "christmas").
        location: Name of the location to resolve to a speaker (e.g. "garage").
    """

    intent: str = ""
    location: str = ""


class PlayMediaCommand(BaseModel):
    """Outbound command published for the downstream media player.

    Attributes:
        entity_id: Speaker entity that should start playback.
        media_id: Selected playlist identifier.
        media_type: Always "playlist".
    """

    entity_id: str
    media_id: str
    media_type: Literal["playlist"] = "playlist"


class CoordinatorResponse(BaseModel):
    """Structured result returned across the collaborator boundary.

    Attributes:
        success: Whether the operation completed.
        message: Human readable success message.
        error: Error description when the operation failed.
        status_code: Category code (200, 400, 404, 409 or 500).
        data: Optional payload for read operations.
    """

    success: bool
    message: str | None = None
    error: str | None = None
    status_code: int = 200
    data: Any = None


class MediaPlayer(NamedTuple):
    """A media player entity as reported by the device-discovery client."""

    entity_id: str
    name: str
    state: str
