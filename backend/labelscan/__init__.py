"""Bottle label scanning backend."""

__version__ = "1.3.4"
