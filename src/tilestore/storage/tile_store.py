"""Open/create entry points and the :class:`TileStore` handle."""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from ..app import flags
from ..core.coords import TileScheme
from ..core.errors import StoreError
from .metadata import MetadataStore, check_metadata
from .reader import TileCursor, TileReader, TilesetSummary, ZoomFilter
from .sqlite import schema as _schema
from .sqlite.blobs import (
    CompactionReport,
    PutResult,
    blob_count,
    delete_orphans,
    orphan_stats,
)
from .sqlite.utils import (
    DEFAULT_BUSY_TIMEOUT_MS,
    MEMORY_PATH,
    ConnectionPool,
    open_db,
    transaction,
    translate_errors,
)
from .sqlite_utils import (
    checkpoint_full,
    delete_sidecars,
    export_single_file,
    optimize,
    vacuum_optimize,
)
from .validation import SummaryReport
from .writer import DEFAULT_CHUNK_SIZE, BatchResult, BatchWriter, TileItem

__all__ = [
    "SCHEMA_VERSION",
    "MBTILES_APPLICATION_ID",
    "DEFAULT_CHUNK_SIZE",
    "STORAGE_SCHEME",
    "TileStore",
    "create_store",
    "open_store",
]

log = logging.getLogger(__name__)

SCHEMA_VERSION = _schema.SCHEMA_VERSION
MBTILES_APPLICATION_ID = _schema.MBTILES_APPLICATION_ID
STORAGE_SCHEME = TileScheme.TMS


@dataclass
class TileStore:
    """An open tile container.

    Tile and metadata writes run on the single write connection; reads use
    read-only connections from ``pool``. Close the store (or use it as a
    context manager) to release every connection.
    """

    path: Path | None
    pool: ConnectionPool
    metadata: MetadataStore
    reader: TileReader = field(repr=False)
    writer: BatchWriter = field(repr=False)
    readonly: bool = False
    journal_mode: str | None = None

    # -- writes --

    def write_batch(self, items: Iterable[TileItem]) -> BatchResult:
        return self.writer.write_batch(items)

    def import_tiles(
        self, items: Iterable[TileItem], chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> BatchResult:
        return self.writer.import_tiles(items, chunk_size=chunk_size)

    def delete_tiles(self, coords: Iterable[Any]) -> int:
        return self.writer.delete_tiles(coords)

    def put_blob(self, data: bytes) -> PutResult:
        return self.writer.put_blob(data)

    def link(self, coord: Any, tile_id: str) -> None:
        self.writer.link(coord, tile_id)

    def unlink(self, coord: Any) -> bool:
        return self.writer.unlink(coord)

    def put_grid(self, coord: Any, grid: bytes) -> None:
        self.writer.put_grid(coord, grid)

    def put_grid_data(self, coord: Any, key: str, value: Any) -> None:
        self.writer.put_grid_data(coord, key, value)

    # -- reads --

    def get_tile(self, coord: Any) -> bytes | None:
        return self.reader.get_tile(coord)

    def has_tile(self, coord: Any) -> bool:
        return self.reader.has_tile(coord)

    def get_blob(self, tile_id: str) -> bytes | None:
        return self.reader.get_blob(tile_id)

    def iter_tiles(self, zoom: ZoomFilter = None) -> TileCursor:
        return self.reader.iter_tiles(zoom)

    def count_tiles(self, zoom: ZoomFilter = None) -> int:
        return self.reader.count_tiles(zoom)

    def tile_index(self, zoom: ZoomFilter = None) -> pd.DataFrame:
        return self.reader.tile_index(zoom)

    def get_grid(self, coord: Any) -> bytes | None:
        return self.reader.get_grid(coord)

    def get_grid_data(self, coord: Any, key: str) -> str | None:
        return self.reader.get_grid_data(coord, key)

    def grid_keys(self, coord: Any) -> list[str]:
        return self.reader.grid_keys(coord)

    def summary(self) -> TilesetSummary:
        return self.reader.summary()

    def verify_summary(self) -> SummaryReport:
        return self.reader.verify_summary()

    def blob_count(self) -> int:
        with translate_errors("count blobs"):
            return blob_count(self.pool.reader())

    # -- maintenance --

    def compact(self, *, vacuum: bool = False) -> CompactionReport:
        """Delete blobs that no tile references.

        Must not run while another session is writing tiles to the same file;
        this is not enforced. ``vacuum=True`` also returns the freed pages to
        the file system.
        """

        conn = self.pool.writer
        with self.pool.write_lock:
            with translate_errors("compact"), transaction(conn):
                report = delete_orphans(conn)
            if vacuum:
                with translate_errors("vacuum"):
                    vacuum_optimize(conn)
        log.info(
            "Compaction removed %d blobs (%d bytes)", report.blobs_removed, report.bytes_reclaimed
        )
        return report

    def orphan_count(self) -> int:
        with translate_errors("count orphans"):
            return orphan_stats(self.pool.reader()).blobs

    def export(self, dst_path: str | os.PathLike[str]) -> Path:
        """Write a compact single-file copy (DELETE journal) to ``dst_path``."""

        with self.pool.write_lock, translate_errors("export"):
            return export_single_file(self.pool.writer, dst_path)

    def close(self) -> None:
        if self.pool.closed:
            return
        try:
            if not self.readonly and not self.pool.in_memory:
                optimize(self.pool.writer)
        finally:
            self.pool.close()
        log.debug("Closed tile store %s", self.path or MEMORY_PATH)

    def __enter__(self) -> TileStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Lifecycle helpers


def _apply_profile(conn: sqlite3.Connection, cloud_safe: bool) -> str:
    pragma_fn = _schema.apply_cloud_safe_pragmas if cloud_safe else _schema.apply_default_pragmas
    pragma_fn(conn)
    return str(conn.execute("PRAGMA journal_mode").fetchone()[0]).upper()


def _build_store(
    path: Path | None,
    pool: ConnectionPool,
    *,
    readonly: bool,
    journal_mode: str | None,
    required_defaults: Mapping[str, Any] | None,
    verify_reads: bool,
) -> TileStore:
    metadata = MetadataStore.open_or_init(
        pool.writer, required_defaults, reader=pool.reader, lock=pool.write_lock
    )
    return TileStore(
        path=path,
        pool=pool,
        metadata=metadata,
        reader=TileReader(pool, metadata, verify_reads=verify_reads),
        writer=BatchWriter(pool.writer, lock=pool.write_lock),
        readonly=readonly,
        journal_mode=journal_mode,
    )


def create_store(
    path: str | os.PathLike[str],
    metadata: Mapping[str, Any],
    *,
    cloud_safe: bool | None = None,
    verify_reads: bool | None = None,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> TileStore:
    """Create a new container at ``path`` (or ``":memory:"``) and return it open.

    ``metadata`` must satisfy the metadata rules (required keys, ``json`` for
    vector formats); when it does not, nothing is left behind on disk.
    """

    raw = os.fspath(path)
    store_path = None if raw == MEMORY_PATH else Path(raw)
    if store_path is not None:
        if store_path.exists():
            raise FileExistsError(store_path)
        store_path.parent.mkdir(parents=True, exist_ok=True)

    cloud = flags.resolve(flags.CLOUD_SAFE, cloud_safe)
    verify = flags.resolve(flags.VERIFY_READS, verify_reads)
    pool = ConnectionPool(raw, busy_timeout_ms=busy_timeout_ms)
    try:
        with translate_errors("create container"):
            journal_mode = _apply_profile(pool.writer, cloud)
            with transaction(pool.writer):
                _schema.ensure_schema(pool.writer)
        store = _build_store(
            store_path,
            pool,
            readonly=False,
            journal_mode=journal_mode,
            required_defaults=metadata,
            verify_reads=verify,
        )
    except BaseException:
        pool.close()
        if store_path is not None:
            store_path.unlink(missing_ok=True)
            delete_sidecars(store_path)
        raise
    log.info("Created tile store %s (journal=%s)", raw, journal_mode)
    return store


def _backup_path(path: Path, version: int) -> Path:
    return path.with_name(f"{path.stem}.v{version}.backup{path.suffix}")


def open_store(
    path: str | os.PathLike[str],
    *,
    readonly: bool = False,
    required_defaults: Mapping[str, Any] | None = None,
    cloud_safe: bool | None = None,
    verify_reads: bool | None = None,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> TileStore:
    """Open an existing container.

    A flat MBTiles file (a real ``tiles`` table) is converted to the
    deduplicated layout in place, after a backup copy is written next to it.
    Its metadata is validated first; an invalid table leaves the file as it was.
    An empty metadata table is populated from ``required_defaults``.
    """

    store_path = Path(path)
    if not store_path.exists():
        raise FileNotFoundError(path)

    with translate_errors("open container"):
        probe = open_db(store_path, mode="ro" if readonly else "rw")
        try:
            version = _schema.get_user_version(probe)
            app_id = _schema.get_application_id(probe)
            flat = _schema.is_flat_layout(probe)
            if version < SCHEMA_VERSION and not readonly:
                # refuse before the backup and any schema change
                check_metadata(probe, required_defaults)
            if flat and not readonly:
                checkpoint_full(probe)
        finally:
            probe.close()

    if app_id not in (0, MBTILES_APPLICATION_ID):
        log.warning("%s carries foreign application_id 0x%08x", store_path, app_id)
    if version > SCHEMA_VERSION:
        raise StoreError(
            f"Container schema version {version} is newer than supported {SCHEMA_VERSION}"
        )
    if flat and readonly:
        raise StoreError(
            f"{store_path} uses the flat MBTiles layout; open it writable to convert it"
        )
    if flat:
        backup = _backup_path(store_path, version)
        shutil.copy2(store_path, backup)
        log.info("Created backup before conversion: %s", backup)

    verify = flags.resolve(flags.VERIFY_READS, verify_reads)
    pool = ConnectionPool(store_path, readonly=readonly, busy_timeout_ms=busy_timeout_ms)
    try:
        with translate_errors("open container"):
            if readonly:
                row = pool.writer.execute("PRAGMA journal_mode").fetchone()
                journal_mode = str(row[0]).upper()
            else:
                cloud = flags.resolve(flags.CLOUD_SAFE, cloud_safe)
                journal_mode = _apply_profile(pool.writer, cloud)
                if flat:
                    with transaction(pool.writer):
                        _schema.migrate_flat_tiles(pool.writer)
                elif version < SCHEMA_VERSION:
                    with transaction(pool.writer):
                        _schema.ensure_schema(pool.writer)
        store = _build_store(
            store_path,
            pool,
            readonly=readonly,
            journal_mode=journal_mode,
            required_defaults=required_defaults,
            verify_reads=verify,
        )
    except BaseException:
        pool.close()
        raise
    log.info(
        "Opened tile store %s (schema v%d, journal=%s)", store_path, SCHEMA_VERSION, journal_mode
    )
    return store
