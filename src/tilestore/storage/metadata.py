"""Typed, validated access to the MBTiles ``metadata`` table.

The table is validated as a whole whenever it is opened or changed, so a
stored container always satisfies:

* ``name``, ``format``, ``bounds``, ``minzoom`` and ``maxzoom`` are present;
* ``bounds`` is ``west,south,east,north`` with ``west <= east`` and
  ``south <= north``; ``0 <= minzoom <= maxzoom <= MAX_ZOOM``;
* ``center``/``type`` parse when present;
* a vector ``format`` carries a ``json`` value describing its layers.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..core.coords import MAX_ZOOM, GeoBoundingBox
from ..core.errors import ImmutableKey, MalformedValue, MissingKey
from ..core.formats import is_vector_format
from ..core.models import VectorTilesetDescriptor, parse_descriptor, serialize_descriptor
from .sqlite.schema import table_kind
from .sqlite.utils import transaction, translate_errors

__all__ = [
    "REQUIRED_KEYS",
    "KNOWN_KEYS",
    "LAYER_TYPES",
    "TilesetMetadata",
    "MetadataStore",
    "validate_metadata",
    "check_metadata",
]

log = logging.getLogger(__name__)

REQUIRED_KEYS: tuple[str, ...] = ("name", "format", "bounds", "minzoom", "maxzoom")
OPTIONAL_KEYS: tuple[str, ...] = ("center", "attribution", "description", "type", "version", "json")
KNOWN_KEYS: tuple[str, ...] = REQUIRED_KEYS + OPTIONAL_KEYS
LAYER_TYPES: tuple[str, ...] = ("overlay", "baselayer")

MetadataValue = Any


@dataclass(frozen=True)
class TilesetMetadata:
    """Parsed view of a validated metadata table."""

    name: str
    format: str
    bounds: GeoBoundingBox
    minzoom: int
    maxzoom: int
    center: tuple[float, float, int] | None = None
    attribution: str | None = None
    description: str | None = None
    type: str | None = None
    version: int | None = None
    vector: VectorTilesetDescriptor | None = None
    custom: dict[str, str] = field(default_factory=dict)

    @property
    def zoom_range(self) -> tuple[int, int]:
        return (self.minzoom, self.maxzoom)

    @property
    def is_vector(self) -> bool:
        return is_vector_format(self.format)


# ---- Value parsing ----------------------------------------------------------


def _parse_zoom(key: str, value: str) -> int:
    text = str(value).strip()
    try:
        zoom = int(text)
    except ValueError as exc:
        raise MalformedValue(key, f"expected an integer zoom level, got {value!r}") from exc
    if not 0 <= zoom <= MAX_ZOOM:
        raise MalformedValue(key, f"zoom {zoom} outside [0, {MAX_ZOOM}]")
    return zoom


_MAX_VERSION = 2**32 - 1


def _parse_version(value: str) -> int:
    """Tileset revision: a non-negative integer that fits in 32 bits."""

    text = str(value).strip()
    try:
        version = int(text)
    except ValueError as exc:
        raise MalformedValue("version", f"expected an integer revision, got {value!r}") from exc
    if not 0 <= version <= _MAX_VERSION:
        raise MalformedValue("version", f"revision {version} outside [0, {_MAX_VERSION}]")
    return version


def _parse_center(value: str) -> tuple[float, float, int]:
    parts = [p.strip() for p in str(value).split(",")]
    if len(parts) != 3:
        raise MalformedValue("center", f"expected 'lon,lat,zoom', got {value!r}")
    try:
        lon, lat = float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise MalformedValue("center", f"non-numeric coordinate in {value!r}") from exc
    if not (-180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
        raise MalformedValue("center", f"position outside the globe in {value!r}")
    return lon, lat, _parse_zoom("center", parts[2])


def _check_value(key: str, value: str) -> None:
    """Validate a single known key in isolation."""

    if key in ("name", "format") and not value.strip():
        raise MalformedValue(key, "must not be empty")
    elif key == "bounds":
        GeoBoundingBox.from_metadata(value)
    elif key in ("minzoom", "maxzoom"):
        _parse_zoom(key, value)
    elif key == "center":
        _parse_center(value)
    elif key == "version":
        _parse_version(value)
    elif key == "type" and value not in LAYER_TYPES:
        raise MalformedValue("type", f"expected one of {', '.join(LAYER_TYPES)}, got {value!r}")
    elif key == "json":
        parse_descriptor(value)


def validate_metadata(values: Mapping[str, str]) -> None:
    """Validate a complete metadata mapping.

    Raises :class:`MissingKey` for absent required keys (``json`` for vector
    formats first, then :data:`REQUIRED_KEYS` in order) and
    :class:`MalformedValue` for values that do not parse.
    """

    if is_vector_format(values.get("format")) and values.get("json") is None:
        raise MissingKey("json")
    for key in REQUIRED_KEYS:
        if values.get(key) is None:
            raise MissingKey(key)
    for key in KNOWN_KEYS:
        value = values.get(key)
        if value is not None:
            _check_value(key, value)
    minzoom = _parse_zoom("minzoom", values["minzoom"])
    maxzoom = _parse_zoom("maxzoom", values["maxzoom"])
    if minzoom > maxzoom:
        raise MalformedValue("maxzoom", f"maxzoom {maxzoom} is below minzoom {minzoom}")


def _to_text(key: str, value: MetadataValue) -> str:
    """Render a caller-supplied value in its stored text form."""

    if isinstance(value, str):
        return value
    if isinstance(value, GeoBoundingBox):
        return value.to_metadata()
    if isinstance(value, VectorTilesetDescriptor):
        return serialize_descriptor(value)
    if isinstance(value, bool):
        raise MalformedValue(key, f"unsupported value type {type(value).__name__}")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (tuple, list)):
        return ",".join(_to_text(key, part) for part in value)
    raise MalformedValue(key, f"unsupported value type {type(value).__name__}")


def _build_view(values: Mapping[str, str]) -> TilesetMetadata:
    fmt = values["format"]
    vector = parse_descriptor(values["json"]) if values.get("json") is not None else None
    return TilesetMetadata(
        name=values["name"],
        format=fmt,
        bounds=GeoBoundingBox.from_metadata(values["bounds"]),
        minzoom=_parse_zoom("minzoom", values["minzoom"]),
        maxzoom=_parse_zoom("maxzoom", values["maxzoom"]),
        center=_parse_center(values["center"]) if values.get("center") is not None else None,
        attribution=values.get("attribution"),
        description=values.get("description"),
        type=values.get("type"),
        version=_parse_version(values["version"]) if values.get("version") is not None else None,
        vector=vector,
        custom={k: v for k, v in values.items() if k not in KNOWN_KEYS},
    )


# ---- Store ------------------------------------------------------------------


def _load(conn: sqlite3.Connection) -> dict[str, str]:
    rows = conn.execute("SELECT name, value FROM metadata").fetchall()
    # Other writers sometimes store zoom levels as INTEGER
    return {
        str(row[0]): (None if row[1] is None else str(row[1]))
        for row in rows
        if row[0] is not None
    }


def _has_tiles(conn: sqlite3.Connection) -> bool:
    return conn.execute("SELECT 1 FROM map LIMIT 1").fetchone() is not None


def _defaults_as_text(defaults: Mapping[str, MetadataValue] | None) -> dict[str, str]:
    return {key: _to_text(key, value) for key, value in (defaults or {}).items()}


def check_metadata(
    conn: sqlite3.Connection, required_defaults: Mapping[str, MetadataValue] | None = None
) -> None:
    """Raise what :meth:`MetadataStore.open_or_init` would raise, without writing.

    Works on files that still carry a flat-layout (or no) ``metadata`` table,
    so a conversion can be refused while the file is untouched.
    """

    current: dict[str, str] = {}
    with translate_errors("read metadata"):
        if table_kind(conn, "metadata") == "table":
            current = _load(conn)
    validate_metadata(current or _defaults_as_text(required_defaults))


class MetadataStore:
    """Validated key/value accessors bound to one container.

    Mutations go through ``conn`` inside ``BEGIN IMMEDIATE`` transactions;
    reads use the connection returned by ``reader`` (``conn`` by default).
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        reader: Callable[[], sqlite3.Connection] | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self._conn = conn
        self._reader = reader or (lambda: conn)
        self._lock = lock or threading.RLock()

    @classmethod
    def open_or_init(
        cls,
        conn: sqlite3.Connection,
        required_defaults: Mapping[str, MetadataValue] | None = None,
        *,
        reader: Callable[[], sqlite3.Connection] | None = None,
        lock: threading.RLock | None = None,
    ) -> MetadataStore:
        """Validate the table, or populate an empty one from ``required_defaults``.

        Defaults are validated before anything is written; on failure the
        table stays empty.
        """

        with translate_errors("read metadata"):
            current = _load(conn)
        if current:
            validate_metadata(current)
            return cls(conn, reader=reader, lock=lock)

        values = _defaults_as_text(required_defaults)
        validate_metadata(values)
        with translate_errors("initialise metadata"), transaction(conn):
            conn.executemany(
                "INSERT INTO metadata(name, value) VALUES (?, ?)", sorted(values.items())
            )
        log.info("Initialised metadata for tileset %r (%d keys)", values["name"], len(values))
        return cls(conn, reader=reader, lock=lock)

    # -- reads --

    def as_dict(self) -> dict[str, str]:
        with translate_errors("read metadata"):
            return _load(self._reader())

    def get(self, key: str) -> str | None:
        with translate_errors("read metadata"):
            row = self._reader().execute(
                "SELECT value FROM metadata WHERE name = ?", (key,)
            ).fetchone()
        if row is None or row[0] is None:
            return None
        return str(row[0])

    def read(self) -> TilesetMetadata:
        return _build_view(self.as_dict())

    def vector_descriptor(self) -> VectorTilesetDescriptor:
        """Parse the ``json`` value; raises :class:`MissingKey` when absent."""

        value = self.get("json")
        if value is None:
            raise MissingKey("json")
        return parse_descriptor(value)

    # -- writes --

    def set(self, key: str, value: MetadataValue) -> None:
        self.set_many({key: value})

    def set_many(
        self, values: Mapping[str, MetadataValue] | Iterable[tuple[str, MetadataValue]]
    ) -> None:
        """Apply several keys atomically; the merged table must stay valid."""

        items = dict(values.items() if isinstance(values, Mapping) else values)
        if not items:
            return
        updates = {key: _to_text(key, value) for key, value in items.items()}
        for key, value in updates.items():
            if not key:
                raise MalformedValue(key, "metadata key must not be empty")
            if key in KNOWN_KEYS:
                _check_value(key, value)

        conn = self._conn
        with self._lock, translate_errors("update metadata"), transaction(conn):
            current = _load(conn)
            new_format = updates.get("format")
            if new_format is not None and new_format != current.get("format") and _has_tiles(conn):
                raise ImmutableKey("format", "tiles have already been written")
            merged = {**current, **updates}
            validate_metadata(merged)
            conn.executemany(
                """
                INSERT INTO metadata(name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = excluded.value
                """,
                list(updates.items()),
            )
        log.debug("Updated metadata keys: %s", ", ".join(sorted(updates)))

    def set_vector_descriptor(self, descriptor: VectorTilesetDescriptor) -> None:
        self.set("json", serialize_descriptor(descriptor))

    def delete(self, key: str) -> bool:
        """Remove an optional key; returns whether it existed."""

        if key in REQUIRED_KEYS:
            raise ImmutableKey(key, "required keys cannot be removed")
        conn = self._conn
        with self._lock, translate_errors("update metadata"), transaction(conn):
            current = _load(conn)
            if key not in current:
                return False
            if key == "json" and is_vector_format(current.get("format")):
                raise ImmutableKey("json", "vector tilesets require a layer descriptor")
            conn.execute("DELETE FROM metadata WHERE name = ?", (key,))
        log.debug("Deleted metadata key %s", key)
        return True
