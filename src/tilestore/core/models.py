from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .coords import MAX_ZOOM
from .errors import MalformedValue

__all__ = [
    "FieldType",
    "VectorLayer",
    "VectorTilesetDescriptor",
    "parse_descriptor",
    "serialize_descriptor",
]

FieldType = Literal["Number", "Boolean", "String"]


class VectorLayer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    fields: dict[str, FieldType] = Field(default_factory=dict)
    description: str | None = None
    minzoom: int | None = Field(default=None, ge=0, le=MAX_ZOOM)
    maxzoom: int | None = Field(default=None, ge=0, le=MAX_ZOOM)

    @field_validator("id")
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("layer id must not be empty")
        return value

    @model_validator(mode="after")
    def _zoom_order(self) -> VectorLayer:
        if self.minzoom is not None and self.maxzoom is not None and self.minzoom > self.maxzoom:
            raise ValueError(f"layer {self.id!r}: minzoom {self.minzoom} > maxzoom {self.maxzoom}")
        return self


class VectorTilesetDescriptor(BaseModel):
    """Contents of the ``json`` metadata value of a vector tileset.

    ``tilestats`` is produced by an external statistics tool and stored
    verbatim.
    """

    model_config = ConfigDict(extra="ignore")

    vector_layers: list[VectorLayer]
    tilestats: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _unique_layer_ids(self) -> VectorTilesetDescriptor:
        seen: set[str] = set()
        for layer in self.vector_layers:
            if layer.id in seen:
                raise ValueError(f"duplicate layer id {layer.id!r}")
            seen.add(layer.id)
        return self

    def layer(self, layer_id: str) -> VectorLayer | None:
        for layer in self.vector_layers:
            if layer.id == layer_id:
                return layer
        return None


def parse_descriptor(text: str | bytes, *, key: str = "json") -> VectorTilesetDescriptor:
    """Parse a ``json`` metadata value, raising :class:`MalformedValue`."""

    try:
        return VectorTilesetDescriptor.model_validate_json(text)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise MalformedValue(key, problems) from exc


def serialize_descriptor(descriptor: VectorTilesetDescriptor) -> str:
    """Compact JSON for the ``json`` metadata value; unset optionals are omitted."""

    payload: dict[str, Any] = {
        "vector_layers": [
            layer.model_dump(mode="json", exclude_none=True) for layer in descriptor.vector_layers
        ]
    }
    if descriptor.tilestats is not None:
        payload["tilestats"] = descriptor.tilestats
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
