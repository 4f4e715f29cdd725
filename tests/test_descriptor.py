import json

import pytest

from tilestore.core.errors import MalformedValue
from tilestore.core.models import (
    VectorLayer,
    VectorTilesetDescriptor,
    parse_descriptor,
    serialize_descriptor,
)

COUNTY_JSON = json.dumps(
    {
        "vector_layers": [
            {
                "id": "tl_2016_us_county",
                "description": "Census counties",
                "minzoom": 0,
                "maxzoom": 5,
                "fields": {
                    "ALAND": "Number",
                    "AWATER": "Number",
                    "GEOID": "String",
                    "MTFCC": "String",
                    "NAME": "String",
                },
            }
        ],
        "tilestats": {
            "layerCount": 1,
            "layers": [
                {
                    "layer": "tl_2016_us_county",
                    "count": 3221,
                    "geometry": "Polygon",
                    "attributeCount": 5,
                    "attributes": [
                        {"attribute": "ALAND", "type": "number", "min": 0, "max": None}
                    ],
                }
            ],
        },
    }
)


def test_parse_county_descriptor():
    descriptor = parse_descriptor(COUNTY_JSON)

    assert [layer.id for layer in descriptor.vector_layers] == ["tl_2016_us_county"]
    layer = descriptor.layer("tl_2016_us_county")
    assert layer is not None
    assert layer.fields["GEOID"] == "String"
    assert (layer.minzoom, layer.maxzoom) == (0, 5)
    assert descriptor.tilestats["layerCount"] == 1
    assert descriptor.layer("missing") is None


def test_descriptor_round_trip_preserves_everything():
    descriptor = VectorTilesetDescriptor(
        vector_layers=[
            VectorLayer(id="roads", fields={"class": "String", "oneway": "Boolean"}),
            VectorLayer(
                id="water",
                description="Lakes and rivers",
                minzoom=2,
                maxzoom=12,
                fields={"area": "Number"},
            ),
        ],
        tilestats={"layerCount": 2, "layers": [{"layer": "roads", "count": 7, "note": None}]},
    )

    assert parse_descriptor(serialize_descriptor(descriptor)) == descriptor
    assert parse_descriptor(COUNTY_JSON) == parse_descriptor(
        serialize_descriptor(parse_descriptor(COUNTY_JSON))
    )


def test_serialize_omits_unset_optionals():
    descriptor = VectorTilesetDescriptor(vector_layers=[VectorLayer(id="test")])
    assert serialize_descriptor(descriptor) == '{"vector_layers":[{"id":"test","fields":{}}]}'

    empty = VectorTilesetDescriptor(vector_layers=[])
    assert serialize_descriptor(empty) == '{"vector_layers":[]}'


def test_unknown_members_are_ignored():
    text = '{"vector_layers":[{"id":"a","source":"x"}],"generator":"tippecanoe"}'
    descriptor = parse_descriptor(text)
    assert descriptor.vector_layers[0].id == "a"


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "{}",
        '{"vector_layers": {}}',
        '{"vector_layers": [{"fields": {}}]}',
        '{"vector_layers": [{"id": ""}]}',
        '{"vector_layers": ["roads"]}',
        '{"vector_layers": [{"id": "a", "fields": {"x": "Integer"}}]}',
        '{"vector_layers": [{"id": "a"}, {"id": "a"}]}',
        '{"vector_layers": [{"id": "a", "minzoom": 6, "maxzoom": 2}]}',
        '{"vector_layers": [{"id": "a", "maxzoom": 31}]}',
    ],
)
def test_malformed_descriptor_is_reported_against_json_key(text):
    with pytest.raises(MalformedValue) as info:
        parse_descriptor(text)
    assert info.value.key == "json"
