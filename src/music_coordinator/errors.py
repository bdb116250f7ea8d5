"""Error taxonomy for the music coordinator.

Every failure raised by the store, the playlist resolver, the message bridge and
the dispatch pipeline derives from ``CoordinatorError``. Each class carries the
status code a synchronous caller (e.g. an HTTP layer) maps it to.
"""


class CoordinatorError(Exception):
    """Base class for all coordinator failures."""

    status_code = 500


class ValidationError(CoordinatorError):
    """A required field is missing or empty."""

    status_code = 400


class NotFoundError(CoordinatorError):
    """A referenced intent, location or playlist group does not exist."""

    status_code = 404


class NoPlaylistsAvailable(NotFoundError):
    """Resolution produced an empty candidate set."""


class ConflictError(CoordinatorError):
    """A create would violate a unique name."""

    status_code = 409


class PersistenceError(CoordinatorError):
    """The storage engine failed."""


class TransportError(CoordinatorError):
    """A message could not be handed off to the broker."""
