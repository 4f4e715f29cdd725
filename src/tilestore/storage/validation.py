"""Consistency checks between declared metadata and the stored tiles.

Declared values stay authoritative for consumers; this module only reports
where the stored tiles disagree with them and never writes.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..core.coords import MAX_ZOOM, GeoBoundingBox, aggregate_bounds
from ..core.formats import TileFormat, sniff_format
from .sqlite.blobs import blob_count, orphan_stats

if TYPE_CHECKING:
    from .metadata import TilesetMetadata

__all__ = ["Discrepancy", "SummaryReport", "ZoomExtent", "observed_extents", "verify_summary"]

log = logging.getLogger(__name__)

_VALID_COORD = (
    f"zoom_level BETWEEN 0 AND {MAX_ZOOM} "
    "AND tile_column >= 0 AND tile_column < (1 << zoom_level) "
    "AND tile_row >= 0 AND tile_row < (1 << zoom_level)"
)


@dataclass(frozen=True)
class Discrepancy:
    field: str
    declared: Any
    observed: Any
    detail: str


@dataclass(frozen=True)
class ZoomExtent:
    """Column/row extremes of one zoom level, rows in XYZ order."""

    zoom: int
    min_column: int
    max_column: int
    min_row: int
    max_row: int
    tiles: int


@dataclass
class SummaryReport:
    declared_zoom_range: tuple[int, int]
    declared_bounds: GeoBoundingBox
    declared_format: str
    observed_zoom_range: tuple[int, int] | None
    observed_bounds: GeoBoundingBox | None
    tile_count: int
    blob_count: int
    orphan_blobs: int
    discrepancies: list[Discrepancy] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.discrepancies

    def fields(self) -> set[str]:
        return {d.field for d in self.discrepancies}


def observed_extents(conn: sqlite3.Connection) -> list[ZoomExtent]:
    """Per-zoom extremes of the stored coordinates, computed in SQL."""

    rows = conn.execute(
        f"""
        SELECT zoom_level, MIN(tile_column), MAX(tile_column),
               MIN(tile_row), MAX(tile_row), COUNT(*)
          FROM map
         WHERE {_VALID_COORD}
         GROUP BY zoom_level
         ORDER BY zoom_level
        """
    ).fetchall()
    extents = []
    for zoom, min_col, max_col, min_tms, max_tms, count in rows:
        top = (1 << zoom) - 1
        extents.append(
            ZoomExtent(
                zoom=int(zoom),
                min_column=int(min_col),
                max_column=int(max_col),
                min_row=top - int(max_tms),
                max_row=top - int(min_tms),
                tiles=int(count),
            )
        )
    return extents


def _coverage(extents: list[ZoomExtent]) -> GeoBoundingBox | None:
    corners = []
    for ext in extents:
        corners.append((ext.zoom, ext.min_column, ext.min_row))
        corners.append((ext.zoom, ext.max_column, ext.max_row))
    return aggregate_bounds(corners)


def _sample_format(conn: sqlite3.Connection) -> str | None:
    row = conn.execute(
        """
        SELECT images.tile_data FROM map
          JOIN images ON images.tile_id = map.tile_id
         ORDER BY map.zoom_level, map.tile_column, map.tile_row
         LIMIT 1
        """
    ).fetchone()
    return sniff_format(bytes(row[0])) if row else None


def verify_summary(conn: sqlite3.Connection, meta: TilesetMetadata) -> SummaryReport:
    """Recompute zoom range and bounds from the stored tiles and compare."""

    extents = observed_extents(conn)
    total = int(conn.execute("SELECT COUNT(*) FROM map").fetchone()[0])
    valid = sum(ext.tiles for ext in extents)
    observed_zoom = (extents[0].zoom, extents[-1].zoom) if extents else None
    observed_bounds = _coverage(extents)

    report = SummaryReport(
        declared_zoom_range=meta.zoom_range,
        declared_bounds=meta.bounds,
        declared_format=meta.format,
        observed_zoom_range=observed_zoom,
        observed_bounds=observed_bounds,
        tile_count=total,
        blob_count=blob_count(conn),
        orphan_blobs=orphan_stats(conn).blobs,
    )
    found = report.discrepancies

    if total != valid:
        found.append(
            Discrepancy(
                "coordinates",
                valid,
                total,
                f"{total - valid} stored tiles lie outside the tile grid",
            )
        )
    if observed_zoom is None:
        found.append(Discrepancy("tiles", meta.zoom_range, None, "no tiles are stored"))
    else:
        if observed_zoom != meta.zoom_range:
            found.append(
                Discrepancy(
                    "zoom_range",
                    meta.zoom_range,
                    observed_zoom,
                    f"declared zoom {meta.minzoom}..{meta.maxzoom}, "
                    f"tiles stored at {observed_zoom[0]}..{observed_zoom[1]}",
                )
            )
        if observed_bounds is not None and not observed_bounds.contains(
            meta.bounds, tolerance=1e-6
        ):
            found.append(
                Discrepancy(
                    "bounds",
                    meta.bounds,
                    observed_bounds,
                    "declared bounds extend beyond the area covered by stored tiles",
                )
            )
        declared_format = meta.format.strip().lower()
        sniffed = _sample_format(conn)
        known = {f.value for f in TileFormat}
        if declared_format in known and sniffed is not None and sniffed != declared_format:
            found.append(
                Discrepancy("format", meta.format, sniffed, f"first tile looks like {sniffed}")
            )

    if meta.vector is not None:
        for layer in meta.vector.vector_layers:
            low = layer.minzoom if layer.minzoom is not None else meta.minzoom
            high = layer.maxzoom if layer.maxzoom is not None else meta.maxzoom
            if low < meta.minzoom or high > meta.maxzoom:
                found.append(
                    Discrepancy(
                        "json",
                        meta.zoom_range,
                        (low, high),
                        f"layer {layer.id!r} zoom range exceeds the tileset zoom range",
                    )
                )

    if found:
        log.info("Summary check found %d discrepancies: %s", len(found), sorted(report.fields()))
    return report
