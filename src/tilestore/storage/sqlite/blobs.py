"""Content-addressed tile blobs and the coordinate -> blob mapping.

Functions take an open connection and never manage transactions themselves;
callers wrap mutations in :func:`~tilestore.storage.sqlite.utils.transaction`.
Rows are addressed by storage (TMS) coordinates.
"""

from __future__ import annotations

import hashlib
import sqlite3
from typing import NamedTuple

__all__ = [
    "PutResult",
    "OrphanStats",
    "CompactionReport",
    "content_hash",
    "put_blob",
    "get_blob",
    "link",
    "unlink",
    "lookup",
    "count_refs",
    "blob_count",
    "orphan_stats",
    "delete_orphans",
]


class PutResult(NamedTuple):
    """Outcome of :func:`put_blob`."""

    tile_id: str
    created: bool


class OrphanStats(NamedTuple):
    blobs: int
    bytes: int


class CompactionReport(NamedTuple):
    """Blobs removed by a compaction pass and the payload bytes they held."""

    blobs_removed: int
    bytes_reclaimed: int


def content_hash(data: bytes) -> str:
    """Return the lowercase SHA-256 hex digest used as ``tile_id``."""

    return hashlib.sha256(data).hexdigest()


def put_blob(conn: sqlite3.Connection, data: bytes) -> PutResult:
    """Store ``data`` once; storing identical bytes again is a no-op."""

    tile_id = content_hash(data)
    cur = conn.execute(
        "INSERT OR IGNORE INTO images(tile_id, tile_data) VALUES (?, ?)",
        (tile_id, sqlite3.Binary(data)),
    )
    return PutResult(tile_id, cur.rowcount > 0)


def get_blob(conn: sqlite3.Connection, tile_id: str) -> bytes | None:
    row = conn.execute("SELECT tile_data FROM images WHERE tile_id = ?", (tile_id,)).fetchone()
    if row is None:
        return None
    return bytes(row[0])


def link(conn: sqlite3.Connection, zoom: int, column: int, tms_row: int, tile_id: str) -> None:
    """Point a coordinate at ``tile_id``, replacing any previous pointer.

    The previous blob is left in place for :func:`delete_orphans`. An unknown
    ``tile_id`` violates the foreign key; :meth:`TileStore.link` reports that
    as :class:`~tilestore.core.errors.ConstraintError`.
    """

    conn.execute(
        """
        INSERT INTO map(zoom_level, tile_column, tile_row, tile_id)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(zoom_level, tile_column, tile_row)
        DO UPDATE SET tile_id = excluded.tile_id
        """,
        (zoom, column, tms_row, tile_id),
    )


def unlink(conn: sqlite3.Connection, zoom: int, column: int, tms_row: int) -> bool:
    """Remove a coordinate mapping; returns whether one existed."""

    cur = conn.execute(
        "DELETE FROM map WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
        (zoom, column, tms_row),
    )
    return cur.rowcount > 0


def lookup(conn: sqlite3.Connection, zoom: int, column: int, tms_row: int) -> str | None:
    """Return the ``tile_id`` mapped at a coordinate."""

    row = conn.execute(
        "SELECT tile_id FROM map WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
        (zoom, column, tms_row),
    ).fetchone()
    return str(row[0]) if row else None


def count_refs(conn: sqlite3.Connection, tile_id: str) -> int:
    row = conn.execute("SELECT COUNT(*) FROM map WHERE tile_id = ?", (tile_id,)).fetchone()
    return int(row[0]) if row else 0


def blob_count(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT COUNT(*) FROM images").fetchone()
    return int(row[0]) if row else 0


_ORPHANS = "NOT EXISTS (SELECT 1 FROM map WHERE map.tile_id = images.tile_id)"


def orphan_stats(conn: sqlite3.Connection) -> OrphanStats:
    """Count unreferenced blobs and their total payload size."""

    row = conn.execute(
        f"SELECT COUNT(*), COALESCE(SUM(LENGTH(tile_data)), 0) FROM images WHERE {_ORPHANS}"
    ).fetchone()
    return OrphanStats(int(row[0]), int(row[1]))


def delete_orphans(conn: sqlite3.Connection) -> CompactionReport:
    """Delete every blob no coordinate references.

    Run inside a write transaction so the reference check and the delete see
    the same state.
    """

    stats = orphan_stats(conn)
    if stats.blobs == 0:
        return CompactionReport(0, 0)
    cur = conn.execute(f"DELETE FROM images WHERE {_ORPHANS}")
    return CompactionReport(int(cur.rowcount), stats.bytes)
