# tilestore
# Copyright © 2025 Osvaldo J. Vega Rodríguez
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Exception hierarchy raised by the tile storage engine."""

from __future__ import annotations

import sqlite3
from typing import Any

__all__ = [
    "TileStoreError",
    "CoordinateError",
    "OutOfRange",
    "MetadataError",
    "MissingKey",
    "MalformedValue",
    "ImmutableKey",
    "StoreError",
    "StoreIOError",
    "ConstraintError",
    "ReadError",
    "ImportInterrupted",
    "wrap_sqlite_error",
]


class TileStoreError(Exception):
    """Base class for every error raised by :mod:`tilestore`."""


class CoordinateError(TileStoreError, ValueError):
    """Raised when a tile coordinate is not addressable."""

    def __init__(self, message: str, coord: Any = None):
        super().__init__(message)
        self.coord = coord


class OutOfRange(CoordinateError):
    """Zoom, column or row fall outside the tile grid."""


class MetadataError(TileStoreError):
    """Base class for metadata table problems."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or key)


class MissingKey(MetadataError):
    """A required metadata key is absent."""

    def __init__(self, key: str):
        super().__init__(key, f"Required metadata key {key!r} is missing")


class MalformedValue(MetadataError):
    """A metadata value does not parse as the expected type."""

    def __init__(self, key: str, reason: str):
        self.reason = reason
        super().__init__(key, f"Metadata value for {key!r} is malformed: {reason}")


class ImmutableKey(MetadataError):
    """The key may not be changed (or removed) in the current state."""

    def __init__(self, key: str, reason: str = "key is immutable"):
        self.reason = reason
        super().__init__(key, f"Metadata key {key!r} cannot be changed: {reason}")


class StoreError(TileStoreError):
    """Failure reported by the underlying SQLite database."""

    def __init__(self, message: str, coord: Any = None):
        super().__init__(message)
        self.coord = coord


class StoreIOError(StoreError):
    """I/O, locking or transaction failure."""


class ConstraintError(StoreError):
    """A table constraint (unique / foreign key / not null) was violated."""


class ReadError(TileStoreError):
    """A read could not be completed; ``__cause__`` holds the store error."""

    def __init__(self, message: str, coord: Any = None):
        super().__init__(message)
        self.coord = coord


class ImportInterrupted(StoreError):
    """A chunked import stopped part-way.

    ``committed`` tiles were made durable by earlier chunks; the chunk that
    failed was rolled back entirely.
    """

    def __init__(self, message: str, *, committed: int, coord: Any = None):
        super().__init__(message, coord=coord)
        self.committed = committed


def wrap_sqlite_error(exc: sqlite3.Error, *, coord: Any = None, action: str = "") -> StoreError:
    """Translate ``exc`` into the matching :class:`StoreError` subclass."""

    prefix = f"{action}: " if action else ""
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintError(f"{prefix}{exc}", coord=coord)
    return StoreIOError(f"{prefix}{exc}", coord=coord)
