"""Maintenance helpers for tile containers: checkpoints, VACUUM, single-file export."""

from __future__ import annotations

import contextlib
import logging
import os
import sqlite3
import tempfile
from pathlib import Path

from .sqlite.utils import open_db

__all__ = [
    "checkpoint_full",
    "optimize",
    "vacuum_optimize",
    "delete_sidecars",
    "export_single_file",
]

log = logging.getLogger(__name__)


def checkpoint_full(conn: sqlite3.Connection) -> None:
    """Fold the WAL back into the main file; no-op outside WAL mode."""

    with contextlib.suppress(sqlite3.Error):
        conn.execute("PRAGMA wal_checkpoint(FULL)")


def optimize(conn: sqlite3.Connection) -> None:
    with contextlib.suppress(sqlite3.Error):
        conn.execute("PRAGMA optimize")


def vacuum_optimize(conn: sqlite3.Connection) -> None:
    """VACUUM (returns freed pages to the OS) and refresh planner statistics."""

    conn.execute("VACUUM")
    optimize(conn)


def delete_sidecars(path: str | os.PathLike[str]) -> None:
    """Remove ``-wal``/``-shm``/``-journal`` files next to ``path`` if present."""

    base = str(Path(path))
    for suffix in ("-wal", "-shm", "-journal"):
        try:
            os.remove(base + suffix)
        except FileNotFoundError:
            continue


def export_single_file(src: sqlite3.Connection, dst_path: str | os.PathLike[str]) -> Path:
    """Copy the live database behind ``src`` into a compact DELETE-journal file.

    The copy is written to a temporary file next to ``dst_path`` and moved into
    place atomically, so readers of ``dst_path`` never see a partial file.
    """

    target = Path(dst_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    checkpoint_full(src)
    with tempfile.NamedTemporaryFile(
        prefix=target.name + ".", suffix=".tmp", dir=target.parent, delete=False
    ) as tmp:
        tmp_path = tmp.name
    try:
        dst = open_db(tmp_path, mode="rw")
        try:
            src.backup(dst)
            dst.execute("PRAGMA journal_mode=DELETE")
            vacuum_optimize(dst)
        finally:
            dst.close()
        delete_sidecars(tmp_path)
        os.replace(tmp_path, target)
    finally:
        if os.path.exists(tmp_path):
            with contextlib.suppress(OSError):
                os.remove(tmp_path)
    log.info("Exported single-file copy to %s", target)
    return target
