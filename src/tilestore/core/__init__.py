"""Coordinates, formats, descriptor models and errors for tilestore."""

from tilestore.core.coords import (
    MAX_ZOOM,
    GeoBoundingBox,
    TileCoordinate,
    TileScheme,
    aggregate_bounds,
    tile_bounds,
    to_storage_row,
    validate,
)
from tilestore.core.formats import TileFormat, is_vector_format, sniff_format
from tilestore.core.models import (
    VectorLayer,
    VectorTilesetDescriptor,
    parse_descriptor,
    serialize_descriptor,
)

__all__ = [
    "MAX_ZOOM",
    "GeoBoundingBox",
    "TileCoordinate",
    "TileScheme",
    "aggregate_bounds",
    "tile_bounds",
    "to_storage_row",
    "validate",
    "TileFormat",
    "is_vector_format",
    "sniff_format",
    "VectorLayer",
    "VectorTilesetDescriptor",
    "parse_descriptor",
    "serialize_descriptor",
]
