# tilestore
# Copyright © 2025 Osvaldo J. Vega Rodríguez
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Public package interface for tilestore, a deduplicating MBTiles container."""

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
from tilestore.core.errors import (
    ConstraintError,
    CoordinateError,
    ImmutableKey,
    ImportInterrupted,
    MalformedValue,
    MetadataError,
    MissingKey,
    OutOfRange,
    ReadError,
    StoreError,
    StoreIOError,
    TileStoreError,
)
from tilestore.core.models import VectorLayer, VectorTilesetDescriptor
from tilestore.storage.sqlite.blobs import CompactionReport, PutResult
from tilestore.storage.metadata import MetadataStore, TilesetMetadata
from tilestore.storage.reader import TileCursor, TilesetSummary
from tilestore.storage.tile_store import (
    DEFAULT_CHUNK_SIZE,
    MBTILES_APPLICATION_ID,
    SCHEMA_VERSION,
    STORAGE_SCHEME,
    TileStore,
    create_store,
    open_store,
)
from tilestore.storage.validation import Discrepancy, SummaryReport
from tilestore.storage.writer import BatchResult

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "MAX_ZOOM",
    "GeoBoundingBox",
    "TileCoordinate",
    "TileScheme",
    "aggregate_bounds",
    "tile_bounds",
    "to_storage_row",
    "validate",
    "TileStoreError",
    "CoordinateError",
    "OutOfRange",
    "MetadataError",
    "MissingKey",
    "MalformedValue",
    "ImmutableKey",
    "StoreError",
    "StoreIOError",
    "ConstraintError",
    "ReadError",
    "ImportInterrupted",
    "VectorLayer",
    "VectorTilesetDescriptor",
    "CompactionReport",
    "PutResult",
    "MetadataStore",
    "TilesetMetadata",
    "TileCursor",
    "TilesetSummary",
    "Discrepancy",
    "SummaryReport",
    "BatchResult",
    "DEFAULT_CHUNK_SIZE",
    "MBTILES_APPLICATION_ID",
    "SCHEMA_VERSION",
    "STORAGE_SCHEME",
    "TileStore",
    "create_store",
    "open_store",
]
