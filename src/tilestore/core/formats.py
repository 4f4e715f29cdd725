"""Tile payload formats recognised in the ``format`` metadata key."""

from __future__ import annotations

import enum

__all__ = ["TileFormat", "VECTOR_FORMATS", "is_vector_format", "sniff_format"]


class TileFormat(str, enum.Enum):
    """Well-known MBTiles formats.

    Any other value of the ``format`` key is kept as a free-form IETF media
    type string.
    """

    PBF = "pbf"  # gzip-compressed Mapbox Vector Tiles
    JPG = "jpg"
    PNG = "png"
    WEBP = "webp"


VECTOR_FORMATS = frozenset({TileFormat.PBF.value})

_MAGIC: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", TileFormat.PNG.value),
    (b"\xff\xd8\xff", TileFormat.JPG.value),
    (b"\x1f\x8b", TileFormat.PBF.value),
)


def is_vector_format(value: str | None) -> bool:
    return (value or "").strip().lower() in VECTOR_FORMATS


def sniff_format(data: bytes) -> str | None:
    """Best-effort format detection from leading magic bytes."""

    head = bytes(data[:16])
    for magic, name in _MAGIC:
        if head.startswith(magic):
            return name
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return TileFormat.WEBP.value
    return None
