"""Tile lookups, snapshot enumeration and tileset summaries."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

import pandas as pd

from ..core.coords import MAX_ZOOM, GeoBoundingBox, TileCoordinate, to_storage_row, validate
from ..core.errors import OutOfRange, ReadError, wrap_sqlite_error
from .sqlite import grids as _grids
from .sqlite.blobs import content_hash
from .sqlite.blobs import get_blob as _get_blob
from .validation import SummaryReport, verify_summary

if TYPE_CHECKING:
    from .metadata import MetadataStore
    from .sqlite.utils import ConnectionPool

__all__ = ["ZoomFilter", "TilesetSummary", "TileCursor", "TileReader", "zoom_clause"]

log = logging.getLogger(__name__)

ZoomFilter = Union[None, int, tuple[int, int]]

_TILE_COLUMNS = "map.zoom_level, map.tile_column, map.tile_row, map.tile_id, images.tile_data"
_TILE_JOIN = "FROM map LEFT JOIN images ON images.tile_id = map.tile_id"


@dataclass(frozen=True)
class TilesetSummary:
    """Declared extent of a tileset, as consumers should see it."""

    zoom_range: tuple[int, int]
    bounds: GeoBoundingBox
    format: str


def _check_zoom(zoom: Any) -> int:
    if isinstance(zoom, bool) or not isinstance(zoom, int):
        raise TypeError(f"zoom must be an int, got {type(zoom).__name__}")
    if not 0 <= zoom <= MAX_ZOOM:
        raise OutOfRange(f"Zoom {zoom} outside [0, {MAX_ZOOM}]", coord=zoom)
    return zoom


def zoom_clause(zoom: ZoomFilter, column: str = "zoom_level") -> tuple[str, list[int]]:
    """SQL condition for a zoom filter: ``None``, a level or an inclusive pair."""

    if zoom is None:
        return "1", []
    if isinstance(zoom, tuple):
        low, high = (_check_zoom(z) for z in zoom)
        if low > high:
            raise ValueError(f"Empty zoom range {low}..{high}")
        return f"{column} BETWEEN ? AND ?", [low, high]
    return f"{column} = ?", [_check_zoom(zoom)]


def _read_error(exc: Exception, message: str, coord: Any = None) -> ReadError:
    store_exc = wrap_sqlite_error(exc, coord=coord, action=message)
    store_exc.__cause__ = exc
    error = ReadError(f"{message}: {exc}", coord=coord)
    error.__cause__ = store_exc
    return error


def _checked_payload(
    tile_id: str, data: bytes | None, coord: TileCoordinate, verify: bool
) -> bytes:
    if data is None:
        raise ReadError(f"Tile {coord} points at missing blob {tile_id}", coord=coord)
    payload = bytes(data)
    if verify and content_hash(payload) != tile_id:
        raise ReadError(f"Blob {tile_id} for tile {coord} fails its hash check", coord=coord)
    return payload


class TileCursor(Iterator[tuple[TileCoordinate, bytes]]):
    """Iterator over ``(coord, bytes)`` bound to one read snapshot.

    Use as a context manager, or exhaust it, to release the snapshot.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        conn: sqlite3.Connection,
        cursor: sqlite3.Cursor,
        *,
        verify: bool = False,
    ) -> None:
        self._pool = pool
        self._conn = conn
        self._cursor = cursor
        self._verify = verify
        self._closed = False
        self.count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> TileCursor:
        return self

    def __next__(self) -> tuple[TileCoordinate, bytes]:
        if self._closed:
            raise StopIteration
        try:
            row = self._cursor.fetchone()
        except sqlite3.Error as exc:
            self.close()
            raise _read_error(exc, "Tile enumeration failed")
        if row is None:
            self.close()
            raise StopIteration
        zoom, column, tms_row, tile_id, data = row
        coord = to_storage_row(TileCoordinate(zoom, column, tms_row))
        try:
            payload = _checked_payload(tile_id, data, coord, self._verify)
        except ReadError:
            self.close()
            raise
        self.count += 1
        return coord, payload

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._cursor.close()
            self._pool.release(self._conn)
        except sqlite3.Error as exc:
            log.warning("Failed to release read snapshot: %s", exc)

    def __enter__(self) -> TileCursor:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TileReader:
    """Read side of a container; every call uses a read-only connection."""

    def __init__(
        self, pool: ConnectionPool, metadata: MetadataStore, *, verify_reads: bool = False
    ) -> None:
        self._pool = pool
        self._metadata = metadata
        self.verify_reads = verify_reads

    def _conn(self) -> sqlite3.Connection:
        try:
            return self._pool.reader()
        except sqlite3.Error as exc:
            raise _read_error(exc, "Cannot open read connection")

    def get_tile(self, coord: Any) -> bytes | None:
        """Bytes stored at an XYZ coordinate, or ``None`` when the tile is absent."""

        tile = TileCoordinate.coerce(coord)
        validate(tile)
        stored = to_storage_row(tile)
        try:
            row = self._conn().execute(
                f"SELECT map.tile_id, images.tile_data {_TILE_JOIN} "
                "WHERE map.zoom_level = ? AND map.tile_column = ? AND map.tile_row = ?",
                (stored.zoom, stored.column, stored.row),
            ).fetchone()
        except sqlite3.Error as exc:
            raise _read_error(exc, f"Failed to read tile {tile}", tile)
        if row is None:
            return None
        return _checked_payload(row[0], row[1], tile, self.verify_reads)

    def has_tile(self, coord: Any) -> bool:
        tile = TileCoordinate.coerce(coord)
        validate(tile)
        stored = to_storage_row(tile)
        try:
            row = self._conn().execute(
                "SELECT 1 FROM map WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
                (stored.zoom, stored.column, stored.row),
            ).fetchone()
        except sqlite3.Error as exc:
            raise _read_error(exc, f"Failed to read tile {tile}", tile)
        return row is not None

    def get_blob(self, tile_id: str) -> bytes | None:
        """Blob bytes for a content hash, or ``None`` when no such blob is stored."""

        try:
            data = _get_blob(self._conn(), tile_id)
        except sqlite3.Error as exc:
            raise _read_error(exc, f"Failed to read blob {tile_id}")
        if data is not None and self.verify_reads and content_hash(data) != tile_id:
            raise ReadError(f"Blob {tile_id} fails its hash check")
        return data

    def iter_tiles(self, zoom: ZoomFilter = None) -> TileCursor:
        """Enumerate stored tiles ordered by zoom, column and storage row.

        The snapshot is taken when this method is called: later writes are
        not visible to the returned cursor, and each call starts a new one.
        """

        clause, params = zoom_clause(zoom, "map.zoom_level")
        try:
            conn = self._pool.snapshot()
        except sqlite3.Error as exc:
            raise _read_error(exc, "Cannot open read snapshot")
        try:
            cursor = conn.execute(
                f"SELECT {_TILE_COLUMNS} {_TILE_JOIN} WHERE {clause} "
                "ORDER BY map.zoom_level, map.tile_column, map.tile_row",
                params,
            )
        except sqlite3.Error as exc:
            self._pool.release(conn)
            raise _read_error(exc, "Tile enumeration failed")
        return TileCursor(self._pool, conn, cursor, verify=self.verify_reads)

    def count_tiles(self, zoom: ZoomFilter = None) -> int:
        clause, params = zoom_clause(zoom)
        try:
            query = f"SELECT COUNT(*) FROM map WHERE {clause}"
            row = self._conn().execute(query, params).fetchone()
        except sqlite3.Error as exc:
            raise _read_error(exc, "Failed to count tiles")
        return int(row[0])

    def tile_index(self, zoom: ZoomFilter = None) -> pd.DataFrame:
        """
        Coordinates (XYZ rows), blob ids and payload sizes as a DataFrame.
        """

        clause, params = zoom_clause(zoom, "map.zoom_level")
        query = [
            'SELECT map.zoom_level AS zoom, map.tile_column AS "column",',
            '((1 << map.zoom_level) - 1 - map.tile_row) AS "row",',
            "map.tile_id AS tile_id, LENGTH(images.tile_data) AS size",
            _TILE_JOIN,
            f"WHERE {clause}",
            "ORDER BY map.zoom_level, map.tile_column, map.tile_row",
        ]
        try:
            df = pd.read_sql_query(" ".join(query), self._conn(), params=params)
        except (sqlite3.Error, pd.errors.DatabaseError) as exc:
            raise _read_error(exc, "Failed to build tile index")
        log.debug("tile_index: zoom=%s rows=%d", zoom, len(df.index))
        return df

    def get_grid(self, coord: Any) -> bytes | None:
        tile = TileCoordinate.coerce(coord)
        validate(tile)
        stored = to_storage_row(tile)
        try:
            return _grids.get_grid(self._conn(), stored.zoom, stored.column, stored.row)
        except sqlite3.Error as exc:
            raise _read_error(exc, f"Failed to read grid {tile}", tile)

    def get_grid_data(self, coord: Any, key: str) -> str | None:
        tile = TileCoordinate.coerce(coord)
        validate(tile)
        stored = to_storage_row(tile)
        try:
            return _grids.get_grid_data(self._conn(), stored.zoom, stored.column, stored.row, key)
        except sqlite3.Error as exc:
            raise _read_error(exc, f"Failed to read grid data {tile}", tile)

    def grid_keys(self, coord: Any) -> list[str]:
        tile = TileCoordinate.coerce(coord)
        validate(tile)
        stored = to_storage_row(tile)
        try:
            return _grids.grid_keys(self._conn(), stored.zoom, stored.column, stored.row)
        except sqlite3.Error as exc:
            raise _read_error(exc, f"Failed to read grid keys {tile}", tile)

    def summary(self) -> TilesetSummary:
        """Declared zoom range, bounds and format from the metadata table."""

        meta = self._metadata.read()
        return TilesetSummary(zoom_range=meta.zoom_range, bounds=meta.bounds, format=meta.format)

    def verify_summary(self) -> SummaryReport:
        """Compare declared metadata with the stored tiles inside one read snapshot."""

        meta = self._metadata.read()
        try:
            conn = self._pool.snapshot()
        except sqlite3.Error as exc:
            raise _read_error(exc, "Cannot open read snapshot")
        try:
            return verify_summary(conn, meta)
        except sqlite3.Error as exc:
            raise _read_error(exc, "Summary check failed")
        finally:
            self._pool.release(conn)
