"""Playlist parsing and random selection.

Intents written by older releases stored their playlists as a single string or a
comma separated list; current releases store a JSON array. ``parse_playlists``
accepts all three by running an ordered chain of parsers, each either returning a
list (match) or ``None`` (try the next one).
"""

import json
import random
from collections.abc import Callable, Iterable, Sequence

from music_coordinator.errors import NoPlaylistsAvailable

PlaylistParser = Callable[[str], list[str] | None]


def _parse_json_list(data: str) -> list[str] | None:
    """Match a JSON array of strings with at least one element."""
    try:
        parsed = json.loads(data)
    except ValueError:
        return None
    if isinstance(parsed, list) and parsed and all(isinstance(item, str) for item in parsed):
        return parsed
    return None


def _parse_comma_separated(data: str) -> list[str] | None:
    """Match any text containing a comma. The result may be empty."""
    if "," not in data:
        return None
    return [part.strip() for part in data.split(",") if part.strip()]


def _parse_single(data: str) -> list[str] | None:
    """Match any non-empty text as a single playlist."""
    if data:
        return [data]
    return None


# AIDEV-NOTE: Order matters - JSON first, then comma split, then the whole text
PLAYLIST_PARSERS: tuple[PlaylistParser, ...] = (
    _parse_json_list,
    _parse_comma_separated,
    _parse_single,
)


def parse_playlists(data: str) -> list[str]:
    """Parse stored playlist text into an ordered list of playlist identifiers.

    Args:
        data: Raw text from the intent's playlist column.

    Returns:
        The playlists of the first matching format, or an empty list.
    """
    for parser in PLAYLIST_PARSERS:
        playlists = parser(data)
        if playlists is not None:
            return playlists
    return []


def normalize_playlists(playlists: Iterable[str]) -> list[str]:
    """Strip identifiers, drop empty ones and remove duplicates keeping the first occurrence."""
    normalized: list[str] = []
    for playlist in playlists:
        stripped = playlist.strip()
        if stripped and stripped not in normalized:
            normalized.append(stripped)
    return normalized


def serialize_playlists(playlists: Iterable[str]) -> str:
    """Serialize playlists to the JSON array stored in the intent table."""
    return json.dumps(normalize_playlists(playlists))


def select_random_playlist(playlists: Sequence[str], rng: random.Random | None = None) -> str:
    """Pick one playlist uniformly at random.

    Args:
        playlists: Candidate playlists.
        rng: Optional random generator, mainly for reproducible tests.

    Returns:
        The selected playlist identifier.

    Raises:
        NoPlaylistsAvailable: If there are no candidates.
    """
    if not playlists:
        raise NoPlaylistsAvailable("no playlists available")
    chooser = rng or random
    return playlists[chooser.randrange(len(playlists))]
