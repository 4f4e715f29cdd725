"""UTFGrid interaction tables (``grids`` and ``grid_data``).

Coordinates are storage (TMS) coordinates. ``grid`` payloads are stored as
given; the UTFGrid convention is gzip-compressed JSON.
"""

from __future__ import annotations

import sqlite3

__all__ = ["put_grid", "get_grid", "put_grid_data", "get_grid_data", "grid_keys"]


def put_grid(conn: sqlite3.Connection, zoom: int, column: int, tms_row: int, grid: bytes) -> None:
    conn.execute(
        """
        INSERT INTO grids(zoom_level, tile_column, tile_row, grid)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(zoom_level, tile_column, tile_row) DO UPDATE SET grid = excluded.grid
        """,
        (zoom, column, tms_row, sqlite3.Binary(grid)),
    )


def get_grid(conn: sqlite3.Connection, zoom: int, column: int, tms_row: int) -> bytes | None:
    row = conn.execute(
        "SELECT grid FROM grids WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
        (zoom, column, tms_row),
    ).fetchone()
    return bytes(row[0]) if row else None


def put_grid_data(
    conn: sqlite3.Connection, zoom: int, column: int, tms_row: int, key: str, value_json: str
) -> None:
    conn.execute(
        """
        INSERT INTO grid_data(zoom_level, tile_column, tile_row, key_name, key_json)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(zoom_level, tile_column, tile_row, key_name)
        DO UPDATE SET key_json = excluded.key_json
        """,
        (zoom, column, tms_row, key, value_json),
    )


def get_grid_data(
    conn: sqlite3.Connection, zoom: int, column: int, tms_row: int, key: str
) -> str | None:
    row = conn.execute(
        """
        SELECT key_json FROM grid_data
         WHERE zoom_level = ? AND tile_column = ? AND tile_row = ? AND key_name = ?
        """,
        (zoom, column, tms_row, key),
    ).fetchone()
    return None if row is None else row[0]


def grid_keys(conn: sqlite3.Connection, zoom: int, column: int, tms_row: int) -> list[str]:
    rows = conn.execute(
        """
        SELECT key_name FROM grid_data
         WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?
         ORDER BY key_name
        """,
        (zoom, column, tms_row),
    ).fetchall()
    return [str(row[0]) for row in rows]
