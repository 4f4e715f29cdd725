"""
Container schema, pragma profiles and in-place migration of flat MBTiles files.
"""

from __future__ import annotations

import logging
import sqlite3

from .blobs import content_hash

__all__ = [
    "SCHEMA_VERSION",
    "MBTILES_APPLICATION_ID",
    "apply_default_pragmas",
    "apply_cloud_safe_pragmas",
    "ensure_schema",
    "get_user_version",
    "set_user_version",
    "get_application_id",
    "set_application_id",
    "table_kind",
    "is_flat_layout",
    "migrate_flat_tiles",
]

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1
MBTILES_APPLICATION_ID = 0x4D504258  # "MPBX"

_HASH_FUNCTION = "tilestore_sha256"

_METADATA_DDL = """
CREATE TABLE IF NOT EXISTS metadata (
    name TEXT PRIMARY KEY,
    value TEXT
)
"""

_GRIDS_DDL = """
CREATE TABLE IF NOT EXISTS grids (
    zoom_level INTEGER NOT NULL,
    tile_column INTEGER NOT NULL,
    tile_row INTEGER NOT NULL,
    grid BLOB NOT NULL,
    PRIMARY KEY (zoom_level, tile_column, tile_row)
)
"""

_GRID_DATA_DDL = """
CREATE TABLE IF NOT EXISTS grid_data (
    zoom_level INTEGER NOT NULL,
    tile_column INTEGER NOT NULL,
    tile_row INTEGER NOT NULL,
    key_name TEXT NOT NULL,
    key_json TEXT,
    PRIMARY KEY (zoom_level, tile_column, tile_row, key_name)
)
"""

_SCHEMA_STATEMENTS: tuple[str, ...] = (
    _METADATA_DDL,
    """
    CREATE TABLE IF NOT EXISTS images (
        tile_id TEXT PRIMARY KEY,
        tile_data BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS map (
        zoom_level INTEGER NOT NULL,
        tile_column INTEGER NOT NULL,
        tile_row INTEGER NOT NULL,
        tile_id TEXT NOT NULL REFERENCES images(tile_id),
        PRIMARY KEY (zoom_level, tile_column, tile_row)
    ) WITHOUT ROWID
    """,
    "CREATE INDEX IF NOT EXISTS map_tile_id ON map(tile_id)",
    """
    CREATE VIEW IF NOT EXISTS tiles AS
    SELECT
        map.zoom_level AS zoom_level,
        map.tile_column AS tile_column,
        map.tile_row AS tile_row,
        images.tile_data AS tile_data
    FROM map
    JOIN images ON images.tile_id = map.tile_id
    """,
    _GRIDS_DDL,
    _GRID_DATA_DDL,
)


# ---- Pragmas ----------------------------------------------------------------


def apply_default_pragmas(conn: sqlite3.Connection) -> None:
    """
    Apply pragmas for LOCAL storage.

    WAL lets readers keep a stable snapshot while the single writer commits;
    NORMAL synchronous is durable across application crashes in WAL mode.
    """
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA temp_store = MEMORY;")
    conn.execute("PRAGMA mmap_size = 268435456;")  # 256MB memory mapping
    conn.execute("PRAGMA cache_size = -131072;")  # 128MB cache


def apply_cloud_safe_pragmas(conn: sqlite3.Connection) -> None:
    """
    Apply pragmas for containers on synced folders (iCloud, Dropbox, ...).

    DELETE journal mode keeps the container a single file. Readers take
    shared locks, so an open enumeration delays the writer's commit.
    """
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = DELETE;")
    conn.execute("PRAGMA synchronous = FULL;")
    conn.execute("PRAGMA temp_store = MEMORY;")
    conn.execute("PRAGMA cache_size = -131072;")  # 128MB cache


# ---- Versioning -------------------------------------------------------------


def get_user_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def set_user_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(f"PRAGMA user_version = {int(version)}")


def get_application_id(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA application_id").fetchone()
    return int(row[0]) if row else 0


def set_application_id(conn: sqlite3.Connection, app_id: int = MBTILES_APPLICATION_ID) -> None:
    conn.execute(f"PRAGMA application_id = {int(app_id)}")


# ---- Schema -----------------------------------------------------------------


def ensure_schema(conn: sqlite3.Connection, *, schema_version: int = SCHEMA_VERSION) -> None:
    """Create every table, index and view that does not exist yet.

    Statements run one by one so the call can take part in an enclosing
    transaction.
    """

    for statement in _SCHEMA_STATEMENTS:
        conn.execute(statement)
    set_application_id(conn)
    set_user_version(conn, schema_version)


def table_kind(conn: sqlite3.Connection, name: str) -> str | None:
    """Return ``"table"``, ``"view"`` or ``None`` for a schema object."""

    row = conn.execute(
        "SELECT type FROM sqlite_master WHERE name = ? AND type IN ('table', 'view')",
        (name,),
    ).fetchone()
    return str(row[0]) if row else None


def is_flat_layout(conn: sqlite3.Connection) -> bool:
    """True for a plain MBTiles file whose ``tiles`` object is a real table."""

    return get_user_version(conn) == 0 and table_kind(conn, "tiles") == "table"


def _hash_or_null(data: bytes | None) -> str | None:
    if data is None:
        return None
    return content_hash(bytes(data))


def _rebuild_keyed_table(
    conn: sqlite3.Connection, table: str, ddl: str, columns: str, where: str
) -> None:
    """Recreate a legacy table under its keyed definition, last row wins."""

    legacy = f"_legacy_{table}"
    conn.execute(f"ALTER TABLE {table} RENAME TO {legacy}")
    conn.execute(ddl)
    conn.execute(
        f"INSERT OR REPLACE INTO {table} ({columns}) "
        f"SELECT {columns} FROM {legacy} WHERE {where} ORDER BY rowid"
    )
    conn.execute(f"DROP TABLE {legacy}")


def migrate_flat_tiles(conn: sqlite3.Connection) -> tuple[int, int]:
    """Convert a flat MBTiles file to the deduplicated layout.

    Must run inside a write transaction. Returns ``(tiles, blobs)`` moved.
    Rows with NULL coordinates or data are dropped; when a coordinate occurs
    more than once the last row wins.
    """

    conn.create_function(_HASH_FUNCTION, 1, _hash_or_null, deterministic=True)

    if table_kind(conn, "metadata") == "table":
        _rebuild_keyed_table(conn, "metadata", _METADATA_DDL, "name, value", "name IS NOT NULL")
    if table_kind(conn, "grids") == "table":
        _rebuild_keyed_table(
            conn,
            "grids",
            _GRIDS_DDL,
            "zoom_level, tile_column, tile_row, grid",
            "zoom_level IS NOT NULL AND tile_column IS NOT NULL "
            "AND tile_row IS NOT NULL AND grid IS NOT NULL",
        )
    if table_kind(conn, "grid_data") == "table":
        _rebuild_keyed_table(
            conn,
            "grid_data",
            _GRID_DATA_DDL,
            "zoom_level, tile_column, tile_row, key_name, key_json",
            "zoom_level IS NOT NULL AND tile_column IS NOT NULL "
            "AND tile_row IS NOT NULL AND key_name IS NOT NULL",
        )

    conn.execute("DROP INDEX IF EXISTS tile_index")
    conn.execute("ALTER TABLE tiles RENAME TO _legacy_tiles")
    ensure_schema(conn)

    valid = (
        "tile_data IS NOT NULL AND zoom_level IS NOT NULL "
        "AND tile_column IS NOT NULL AND tile_row IS NOT NULL"
    )
    conn.execute(
        f"INSERT OR IGNORE INTO images (tile_id, tile_data) "
        f"SELECT {_HASH_FUNCTION}(data), data FROM "
        f"(SELECT CAST(tile_data AS BLOB) AS data FROM _legacy_tiles WHERE {valid})"
    )
    conn.execute(
        f"INSERT OR REPLACE INTO map (zoom_level, tile_column, tile_row, tile_id) "
        f"SELECT zoom_level, tile_column, tile_row, {_HASH_FUNCTION}(CAST(tile_data AS BLOB)) "
        f"FROM _legacy_tiles WHERE {valid} ORDER BY rowid"
    )
    conn.execute("DROP TABLE _legacy_tiles")
    tiles = int(conn.execute("SELECT COUNT(*) FROM map").fetchone()[0])
    blobs = int(conn.execute("SELECT COUNT(*) FROM images").fetchone()[0])

    log.info("Migrated flat tiles table: %d tiles, %d distinct blobs", tiles, blobs)
    return tiles, blobs
