# tilestore
# Copyright © 2025 Osvaldo J. Vega Rodríguez
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Tile grid coordinates, row-origin conversion and geographic bounds.

All coordinates handled by the public API use the XYZ convention (row 0 is the
top of the map).  MBTiles stores rows in the TMS convention (row 0 is the
bottom), so rows are flipped exactly once, with :func:`to_storage_row`, when a
coordinate crosses the storage boundary.
"""

from __future__ import annotations

import enum
import operator
from collections.abc import Iterable
from dataclasses import dataclass
from itertools import islice
from typing import Any

import mercantile
import numpy as np

from .errors import MalformedValue, OutOfRange

__all__ = [
    "MAX_ZOOM",
    "TileScheme",
    "TileCoordinate",
    "GeoBoundingBox",
    "validate",
    "to_storage_row",
    "tile_bounds",
    "aggregate_bounds",
]

MAX_ZOOM = 30
_AGGREGATE_CHUNK = 65536


class TileScheme(str, enum.Enum):
    """Row origin of a tile grid."""

    XYZ = "xyz"  # top-left origin
    TMS = "tms"  # bottom-left origin


def _check_integers(parts: tuple[Any, Any, Any], value: Any) -> tuple[int, int, int]:
    checked = []
    for part in parts:
        if isinstance(part, bool):
            raise OutOfRange(f"Not a tile coordinate: {value!r}", coord=value)
        try:
            checked.append(operator.index(part))
        except TypeError as exc:
            raise OutOfRange(f"Not a tile coordinate: {value!r}", coord=value) from exc
    return checked[0], checked[1], checked[2]


@dataclass(frozen=True, slots=True)
class TileCoordinate:
    """A tile address ``(zoom, column, row)`` with XYZ row origin."""

    zoom: int
    column: int
    row: int

    @classmethod
    def coerce(cls, value: Any) -> TileCoordinate:
        """Return ``value`` as a coordinate; accepts ``(z, x, y)`` sequences.

        Components must be integers (``bool`` excluded); floats and numeric
        strings raise :class:`OutOfRange` instead of being truncated.
        """

        if isinstance(value, TileCoordinate):
            if all(type(part) is int for part in value.zxy):
                return value
            return cls(*_check_integers(value.zxy, value))
        try:
            zoom, column, row = value
        except (TypeError, ValueError) as exc:
            raise OutOfRange(f"Not a tile coordinate: {value!r}", coord=value) from exc
        return cls(*_check_integers((zoom, column, row), value))

    @property
    def zxy(self) -> tuple[int, int, int]:
        return (self.zoom, self.column, self.row)

    def __str__(self) -> str:
        return f"{self.zoom}/{self.column}/{self.row}"


@dataclass(frozen=True, slots=True)
class GeoBoundingBox:
    """Longitude/latitude rectangle in degrees."""

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self) -> None:
        if self.west > self.east:
            raise ValueError(f"west ({self.west}) must not exceed east ({self.east})")
        if self.south > self.north:
            raise ValueError(f"south ({self.south}) must not exceed north ({self.north})")

    def union(self, other: GeoBoundingBox) -> GeoBoundingBox:
        return GeoBoundingBox(
            min(self.west, other.west),
            min(self.south, other.south),
            max(self.east, other.east),
            max(self.north, other.north),
        )

    def contains(self, other: GeoBoundingBox, *, tolerance: float = 1e-9) -> bool:
        return (
            self.west <= other.west + tolerance
            and self.south <= other.south + tolerance
            and self.east >= other.east - tolerance
            and self.north >= other.north - tolerance
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.west, self.south, self.east, self.north)

    def to_metadata(self) -> str:
        """Format as the MBTiles ``bounds`` value ``"west,south,east,north"``."""

        return ",".join(_format_degrees(v) for v in self.as_tuple())

    @classmethod
    def from_metadata(cls, value: str, *, key: str = "bounds") -> GeoBoundingBox:
        """Parse an MBTiles ``bounds`` value; raises :class:`MalformedValue`."""

        parts = [p.strip() for p in str(value).split(",")]
        if len(parts) != 4:
            raise MalformedValue(key, f"expected 4 comma-separated numbers, got {value!r}")
        try:
            west, south, east, north = (float(p) for p in parts)
        except ValueError as exc:
            raise MalformedValue(key, f"non-numeric component in {value!r}") from exc
        if not (-180.0 <= west <= 180.0 and -180.0 <= east <= 180.0):
            raise MalformedValue(key, f"longitude outside [-180, 180] in {value!r}")
        if not (-90.0 <= south <= 90.0 and -90.0 <= north <= 90.0):
            raise MalformedValue(key, f"latitude outside [-90, 90] in {value!r}")
        try:
            return cls(west, south, east, north)
        except ValueError as exc:
            raise MalformedValue(key, str(exc)) from exc


def _format_degrees(value: float) -> str:
    as_float = float(value)
    if as_float.is_integer():
        return str(int(as_float))
    return repr(as_float)


def validate(coord: TileCoordinate) -> None:
    """Raise :class:`OutOfRange` unless ``coord`` addresses a tile of the grid."""

    _check_integers(coord.zxy, coord)
    if not 0 <= coord.zoom <= MAX_ZOOM:
        raise OutOfRange(f"Zoom {coord.zoom} outside [0, {MAX_ZOOM}] for tile {coord}", coord=coord)
    limit = 1 << coord.zoom
    if not 0 <= coord.column < limit:
        raise OutOfRange(
            f"Column {coord.column} outside [0, {limit - 1}] for tile {coord}", coord=coord
        )
    if not 0 <= coord.row < limit:
        raise OutOfRange(f"Row {coord.row} outside [0, {limit - 1}] for tile {coord}", coord=coord)


def to_storage_row(coord: TileCoordinate, scheme: TileScheme = TileScheme.TMS) -> TileCoordinate:
    """Convert between XYZ and ``scheme`` rows.

    The flip ``row -> 2**zoom - 1 - row`` is an involution, so the same call
    converts XYZ to TMS and TMS back to XYZ.
    """

    if TileScheme(scheme) is TileScheme.XYZ:
        return coord
    return TileCoordinate(coord.zoom, coord.column, (1 << coord.zoom) - 1 - coord.row)


def tile_bounds(coord: TileCoordinate) -> GeoBoundingBox:
    """Web-Mercator bounds of an XYZ tile."""

    validate(coord)
    bbox = mercantile.bounds(coord.column, coord.row, coord.zoom)
    return GeoBoundingBox(bbox.west, bbox.south, bbox.east, bbox.north)


def aggregate_bounds(
    coords: Iterable[TileCoordinate | tuple[int, int, int]],
) -> GeoBoundingBox | None:
    """Union of the bounds of ``coords``; ``None`` when the iterable is empty.

    The input is consumed in fixed-size chunks; only the column/row extremes
    per zoom level are kept, so arbitrarily long streams use constant memory.
    """

    extremes: dict[int, list[int]] = {}
    iterator = iter(coords)
    while True:
        chunk = [TileCoordinate.coerce(c).zxy for c in islice(iterator, _AGGREGATE_CHUNK)]
        if not chunk:
            break
        arr = np.asarray(chunk, dtype=np.int64)
        zooms, cols, rows = arr[:, 0], arr[:, 1], arr[:, 2]
        if zooms.min() < 0 or zooms.max() > MAX_ZOOM:
            bad = int(np.flatnonzero((zooms < 0) | (zooms > MAX_ZOOM))[0])
            validate(TileCoordinate(*chunk[bad]))
        limits = np.left_shift(np.int64(1), zooms)
        invalid = (cols < 0) | (rows < 0) | (cols >= limits) | (rows >= limits)
        if invalid.any():
            validate(TileCoordinate(*chunk[int(np.flatnonzero(invalid)[0])]))
        for zoom in np.unique(zooms):
            mask = zooms == zoom
            z_cols, z_rows = cols[mask], rows[mask]
            found = [int(z_cols.min()), int(z_cols.max()), int(z_rows.min()), int(z_rows.max())]
            seen = extremes.get(int(zoom))
            if seen is None:
                extremes[int(zoom)] = found
            else:
                seen[0] = min(seen[0], found[0])
                seen[1] = max(seen[1], found[1])
                seen[2] = min(seen[2], found[2])
                seen[3] = max(seen[3], found[3])

    result: GeoBoundingBox | None = None
    for zoom, (min_col, max_col, min_row, max_row) in extremes.items():
        top_left = mercantile.bounds(min_col, min_row, zoom)
        bottom_right = mercantile.bounds(max_col, max_row, zoom)
        box = GeoBoundingBox(top_left.west, bottom_right.south, bottom_right.east, top_left.north)
        result = box if result is None else result.union(box)
    return result
