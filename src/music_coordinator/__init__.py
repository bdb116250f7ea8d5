"""This package maps named intents and locations to playlist playback commands sent over MQTT."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("music-coordinator")
except PackageNotFoundError:
    # Fallback for running from a source checkout
    __version__ = "dev"

__all__ = ["__version__"]
