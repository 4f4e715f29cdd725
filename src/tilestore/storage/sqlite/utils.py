"""
Connection helpers for the SQLite tile container.

Connections, pragmas, the transaction context manager, error translation
and the per-store connection pool (one writer, thread-local readers).
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, cast

from ...core.errors import wrap_sqlite_error

__all__ = [
    "open_db",
    "set_pragmas",
    "transaction",
    "translate_errors",
    "ConnectionPool",
    "DEFAULT_BUSY_TIMEOUT_MS",
]

log = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5000
MEMORY_PATH = ":memory:"


# ---- Connections ------------------------------------------------------------


def open_db(
    path: str | os.PathLike[str],
    *,
    mode: str = "rwc",
    apply_pragmas: bool = False,
    pragmas: Mapping[str, object] | None = None,
) -> sqlite3.Connection:
    """
    Open a SQLite database in autocommit mode with ``sqlite3.Row`` rows.

    mode: "ro" (read-only), "rw", "rwc" (create if needed). Default: "rwc".
    Transactions are always explicit; see :func:`transaction`.
    """
    path = os.fspath(path)
    if path == MEMORY_PATH:
        conn = sqlite3.connect(MEMORY_PATH, check_same_thread=False, isolation_level=None)
    else:
        uri = f"file:{path}?mode={mode}"
        conn = sqlite3.connect(uri, uri=True, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    if apply_pragmas:
        set_pragmas(conn, pragmas or {})
    return conn


def _on_off(value: object) -> str:
    return "ON" if value else "OFF"


def _as_int(value: object) -> str:
    return str(int(cast(Any, value)))


# option name -> (pragma, value renderer)
_PRAGMAS: dict[str, tuple[str, Callable[[object], str]]] = {
    "foreign_keys": ("foreign_keys", _on_off),
    "query_only": ("query_only", _on_off),
    "journal_mode": ("journal_mode", str),
    "synchronous": ("synchronous", str),
    "temp_store": ("temp_store", str),
    "cache_size": ("cache_size", _as_int),
    "mmap_size": ("mmap_size", _as_int),
    "busy_timeout_ms": ("busy_timeout", _as_int),
}


def set_pragmas(conn: sqlite3.Connection, opts: Mapping[str, object]) -> None:
    """Apply the pragmas named in ``opts``; unknown option names are ignored."""

    for key, value in opts.items():
        entry = _PRAGMAS.get(str(key).lower())
        if entry is None:
            continue
        pragma, render = entry
        conn.execute(f"PRAGMA {pragma}={render(value)}")


# ---- Transactions -----------------------------------------------------------


@contextmanager
def transaction(
    conn: sqlite3.Connection,
    *,
    begin: str = "BEGIN IMMEDIATE",
) -> Iterator[sqlite3.Connection]:
    """
    Transaction wrapper that commits on success and rolls back on error.
    Uses BEGIN IMMEDIATE by default so a second writer waits up front.
    """

    conn.execute(begin)
    try:
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


@contextmanager
def translate_errors(action: str, *, coord: Any = None) -> Iterator[None]:
    """Re-raise any ``sqlite3.Error`` as the matching :class:`StoreError`."""

    try:
        yield
    except sqlite3.Error as exc:
        raise wrap_sqlite_error(exc, coord=coord, action=action) from exc


# ---- Pool -------------------------------------------------------------------


class ConnectionPool:
    """One write connection plus read-only connections for one container file.

    Writers in this process serialise on ``write_lock``. Point reads use a
    connection bound to the calling thread. Snapshot connections are
    created per enumeration and handed back with :meth:`release`.
    In-memory databases cannot be shared between connections, so every
    request is served by the write connection there. Closing the pool also
    closes snapshots that were never released.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        readonly: bool = False,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.path = os.fspath(path)
        self.readonly = readonly
        self.busy_timeout_ms = busy_timeout_ms
        self._local = threading.local()
        self._lock = threading.Lock()
        self.write_lock = threading.RLock()
        self._readers: list[sqlite3.Connection] = []
        self._snapshots: set[sqlite3.Connection] = set()
        self._closed = False
        self.writer = open_db(
            self.path,
            mode="ro" if readonly else "rwc",
            apply_pragmas=True,
            pragmas={"busy_timeout_ms": busy_timeout_ms},
        )

    @property
    def in_memory(self) -> bool:
        return self.path == MEMORY_PATH

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def open_snapshots(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def _open_reader(self) -> sqlite3.Connection:
        return open_db(
            self.path,
            mode="ro",
            apply_pragmas=True,
            pragmas={"busy_timeout_ms": self.busy_timeout_ms, "query_only": True},
        )

    def reader(self) -> sqlite3.Connection:
        """Read-only connection owned by the current thread."""

        if self._closed:
            raise sqlite3.ProgrammingError("Cannot operate on a closed store")
        if self.in_memory:
            return self.writer
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._open_reader()
            self._local.conn = conn
            with self._lock:
                self._readers.append(conn)
        return conn

    def snapshot(self) -> sqlite3.Connection:
        """Fresh read-only connection with an open read transaction.

        The snapshot is fixed by the first statement executed on it. Hand it
        back with :meth:`release`; snapshots still out when the pool closes
        are closed with it.
        """

        if self._closed:
            raise sqlite3.ProgrammingError("Cannot operate on a closed store")
        if self.in_memory:
            return self.writer
        conn = self._open_reader()
        conn.execute("BEGIN")
        with self._lock:
            self._snapshots.add(conn)
        return conn

    def release(self, conn: sqlite3.Connection) -> None:
        """Close a connection obtained from :meth:`snapshot`."""

        if conn is self.writer:
            return
        with self._lock:
            if conn not in self._snapshots:
                return
            self._snapshots.discard(conn)
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        conn.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            readers, self._readers = self._readers, []
            snapshots, self._snapshots = list(self._snapshots), set()
        for conn in readers + snapshots:
            conn.close()
        self.writer.close()
        log.debug(
            "Closed connection pool for %s (%d readers, %d open snapshots)",
            self.path,
            len(readers),
            len(snapshots),
        )
