"""Transactional tile writes.

Every call of :meth:`BatchWriter.write_batch` is one ``BEGIN IMMEDIATE``
transaction: either all of its tiles become visible or none do. Long
streams go through :meth:`BatchWriter.import_tiles`, which commits every
``chunk_size`` tiles so memory and lock hold time stay bounded.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable
from itertools import islice
from typing import Any, NamedTuple

from ..core.coords import TileCoordinate, to_storage_row, validate
from ..core.errors import ConstraintError, CoordinateError, ImportInterrupted, StoreError
from .sqlite import blobs as _blobs
from .sqlite import grids as _grids
from .sqlite.utils import transaction, translate_errors

__all__ = ["DEFAULT_CHUNK_SIZE", "BatchResult", "BatchWriter", "TileItem"]

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000

TileItem = tuple[Any, bytes]


class BatchResult(NamedTuple):
    """Counts for a committed write.

    ``tiles_written`` counts input items, so a coordinate written twice in
    one batch counts twice.
    """

    tiles_written: int
    blobs_created: int


def _storage_coord(value: Any) -> tuple[TileCoordinate, TileCoordinate]:
    coord = TileCoordinate.coerce(value)
    validate(coord)
    return coord, to_storage_row(coord)


def _as_bytes(coord: TileCoordinate, data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise ConstraintError(
        f"Tile data for {coord} must be bytes, got {type(data).__name__}", coord=coord
    )


class BatchWriter:
    """Writes tiles through the store's single write connection.

    ``lock`` serialises writers sharing the connection within the process.
    """

    def __init__(self, conn: sqlite3.Connection, *, lock: threading.RLock | None = None) -> None:
        self._conn = conn
        self._lock = lock or threading.RLock()

    def _write_items(self, items: Iterable[TileItem]) -> BatchResult:
        conn = self._conn
        written = created = 0
        for raw_coord, data in items:
            coord, stored = _storage_coord(raw_coord)
            payload = _as_bytes(coord, data)
            with translate_errors(f"write tile {coord}", coord=coord):
                put = _blobs.put_blob(conn, payload)
                _blobs.link(conn, stored.zoom, stored.column, stored.row, put.tile_id)
            written += 1
            created += int(put.created)
        return BatchResult(written, created)

    def write_batch(self, items: Iterable[TileItem]) -> BatchResult:
        """Write ``(coord, bytes)`` pairs atomically.

        ``items`` is consumed lazily. The first failing item aborts the batch,
        everything is rolled back and the error is raised with ``.coord`` set
        to the offending coordinate. Raising from inside ``items`` abandons
        the batch the same way.
        """

        with self._lock, translate_errors("write batch"), transaction(self._conn):
            result = self._write_items(items)
        log.info(
            "Committed batch: %d tiles, %d new blobs", result.tiles_written, result.blobs_created
        )
        return result

    def import_tiles(
        self, items: Iterable[TileItem], chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> BatchResult:
        """Stream ``items`` into the store, committing every ``chunk_size`` tiles.

        On failure the current chunk is rolled back and
        :class:`ImportInterrupted` is raised; its ``committed`` attribute is the
        number of leading items already durable, so the import can be resumed
        by skipping that many items.
        """

        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        iterator = iter(items)
        committed = created = chunks = 0
        while True:
            chunk = list(islice(iterator, chunk_size))
            if not chunk:
                break
            try:
                with self._lock, translate_errors("import chunk"), transaction(self._conn):
                    result = self._write_items(chunk)
            except (CoordinateError, StoreError) as exc:
                coord = getattr(exc, "coord", None)
                log.warning(
                    "Import interrupted at %s after %d committed tiles: %s", coord, committed, exc
                )
                raise ImportInterrupted(
                    f"Import stopped after {committed} committed tiles: {exc}",
                    committed=committed,
                    coord=coord,
                ) from exc
            chunks += 1
            committed += result.tiles_written
            created += result.blobs_created
            log.debug("Committed chunk %d (%d tiles so far)", chunks, committed)
        log.info("Imported %d tiles in %d chunks (%d new blobs)", committed, chunks, created)
        return BatchResult(committed, created)

    def delete_tiles(self, coords: Iterable[Any]) -> int:
        """Unlink coordinates atomically; returns how many mappings existed.

        Blobs stay in place until compaction.
        """

        removed = 0
        with self._lock, translate_errors("delete tiles"), transaction(self._conn):
            for raw in coords:
                coord, stored = _storage_coord(raw)
                with translate_errors(f"delete tile {coord}", coord=coord):
                    existed = _blobs.unlink(self._conn, stored.zoom, stored.column, stored.row)
                removed += int(existed)
        log.info("Deleted %d tiles", removed)
        return removed

    # -- single blob operations --

    def put_blob(self, data: bytes) -> _blobs.PutResult:
        """Store ``data`` once and return its content hash; duplicates are a no-op."""

        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise ConstraintError(f"Blob data must be bytes, got {type(data).__name__}")
        with self._lock, translate_errors("put blob"), transaction(self._conn):
            return _blobs.put_blob(self._conn, bytes(data))

    def link(self, coord: Any, tile_id: str) -> None:
        """Point ``coord`` at an existing blob, replacing any previous pointer.

        An unknown ``tile_id`` raises :class:`ConstraintError`.
        """

        tile, stored = _storage_coord(coord)
        with (
            self._lock,
            translate_errors(f"link tile {tile}", coord=tile),
            transaction(self._conn),
        ):
            _blobs.link(self._conn, stored.zoom, stored.column, stored.row, tile_id)

    def unlink(self, coord: Any) -> bool:
        tile, stored = _storage_coord(coord)
        with (
            self._lock,
            translate_errors(f"unlink tile {tile}", coord=tile),
            transaction(self._conn),
        ):
            return _blobs.unlink(self._conn, stored.zoom, stored.column, stored.row)

    def put_grid(self, coord: Any, grid: bytes) -> None:
        """Store a UTFGrid payload (gzip-compressed JSON) for a tile."""

        tile, stored = _storage_coord(coord)
        payload = _as_bytes(tile, grid)
        with (
            self._lock,
            translate_errors(f"write grid {tile}", coord=tile),
            transaction(self._conn),
        ):
            _grids.put_grid(self._conn, stored.zoom, stored.column, stored.row, payload)

    def put_grid_data(self, coord: Any, key: str, value: Any) -> None:
        """Store the UTFGrid key data for ``key``; non-string values are JSON encoded."""

        tile, stored = _storage_coord(coord)
        text = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"))
        with (
            self._lock,
            translate_errors(f"write grid data {tile}", coord=tile),
            transaction(self._conn),
        ):
            _grids.put_grid_data(self._conn, stored.zoom, stored.column, stored.row, key, text)
