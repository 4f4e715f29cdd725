import numpy as np
import pytest

from tilestore.core import coords
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
from tilestore.core.errors import MalformedValue, OutOfRange

WEB_MERCATOR_LAT = 85.0511287798066


def _sample_coords():
    for zoom in range(MAX_ZOOM + 1):
        top = (1 << zoom) - 1
        for column, row in {(0, 0), (top, 0), (0, top), (top, top), (top // 2, top // 3)}:
            yield TileCoordinate(zoom, column, row)


def test_storage_row_flip_is_an_involution():
    for coord in _sample_coords():
        flipped = to_storage_row(coord)
        assert to_storage_row(flipped) == coord
        assert flipped.row == (1 << coord.zoom) - 1 - coord.row


def test_xyz_scheme_is_identity():
    coord = TileCoordinate(3, 2, 1)
    assert to_storage_row(coord, TileScheme.XYZ) is coord
    assert to_storage_row(coord, "tms") == TileCoordinate(3, 2, 6)


@pytest.mark.parametrize(
    "zxy",
    [
        (0, 1, 0),
        (0, 0, 1),
        (5, 32, 0),
        (5, 0, 32),
        (2, -1, 0),
        (2, 0, -1),
        (MAX_ZOOM + 1, 0, 0),
        (-1, 0, 0),
    ],
)
def test_validate_rejects_out_of_range(zxy):
    coord = TileCoordinate(*zxy)
    with pytest.raises(OutOfRange) as info:
        validate(coord)
    assert info.value.coord == coord


def test_validate_accepts_grid_corners():
    for coord in _sample_coords():
        validate(coord)


def test_coerce_accepts_tuples_and_rejects_garbage():
    assert TileCoordinate.coerce((4, 3, 2)) == TileCoordinate(4, 3, 2)
    coord = TileCoordinate(1, 1, 1)
    assert TileCoordinate.coerce(coord) is coord
    assert str(coord) == "1/1/1"
    with pytest.raises(OutOfRange):
        TileCoordinate.coerce("not a tile")
    with pytest.raises(OutOfRange):
        TileCoordinate.coerce((1, 2))


@pytest.mark.parametrize(
    "value",
    [(2, 1.9, 1), (2, 3.7, 0.2), (True, 0, 0), ("2", "1", "1"), (2.0, 1, 1)],
)
def test_coerce_rejects_non_integer_components(value):
    with pytest.raises(OutOfRange) as info:
        TileCoordinate.coerce(value)
    assert info.value.coord == value


def test_coerce_accepts_numpy_integers():
    coord = TileCoordinate.coerce(np.array([3, 2, 1], dtype=np.int64))
    assert coord == TileCoordinate(3, 2, 1)
    assert all(type(part) is int for part in coord.zxy)


def test_validate_rejects_fractional_fields():
    with pytest.raises(OutOfRange):
        validate(TileCoordinate(2, 1.5, 0))


def test_tile_bounds_world_tile():
    box = tile_bounds(TileCoordinate(0, 0, 0))
    assert box.west == pytest.approx(-180.0)
    assert box.east == pytest.approx(180.0)
    assert box.north == pytest.approx(WEB_MERCATOR_LAT)
    assert box.south == pytest.approx(-WEB_MERCATOR_LAT)


def test_tile_bounds_uses_xyz_rows():
    north_west = tile_bounds(TileCoordinate(1, 0, 0))
    assert north_west.west == pytest.approx(-180.0)
    assert north_west.east == pytest.approx(0.0)
    assert north_west.south == pytest.approx(0.0, abs=1e-9)
    assert north_west.north == pytest.approx(WEB_MERCATOR_LAT)


def test_tile_bounds_validates_first():
    with pytest.raises(OutOfRange):
        tile_bounds(TileCoordinate(1, 2, 0))


def test_aggregate_bounds_empty_is_none():
    assert aggregate_bounds([]) is None
    assert aggregate_bounds(iter(())) is None


def test_aggregate_bounds_matches_union_of_tiles(monkeypatch):
    monkeypatch.setattr(coords, "_AGGREGATE_CHUNK", 3)
    tiles = [
        TileCoordinate(4, 3, 5),
        TileCoordinate(4, 9, 2),
        TileCoordinate(6, 40, 33),
        (6, 12, 50),
        TileCoordinate(4, 4, 4),
        (10, 1000, 1),
        TileCoordinate(4, 3, 5),
    ]
    expected = None
    for tile in tiles:
        box = tile_bounds(TileCoordinate.coerce(tile))
        expected = box if expected is None else expected.union(box)

    result = aggregate_bounds(t for t in tiles)

    assert result is not None
    assert result.as_tuple() == pytest.approx(expected.as_tuple())


def test_aggregate_bounds_rejects_invalid_tile():
    with pytest.raises(OutOfRange) as info:
        aggregate_bounds([(3, 1, 1), (3, 8, 0)])
    assert info.value.coord == TileCoordinate(3, 8, 0)


def test_bounds_metadata_round_trip():
    box = GeoBoundingBox.from_metadata("-180,-85,180,85")
    assert box == GeoBoundingBox(-180.0, -85.0, 180.0, 85.0)
    assert box.to_metadata() == "-180,-85,180,85"
    assert GeoBoundingBox(1.5, 2.25, 3.0, 4.0).to_metadata() == "1.5,2.25,3,4"


@pytest.mark.parametrize(
    "value",
    ["1,2,3", "a,b,c,d", "10,0,5,1", "0,10,1,5", "-200,0,0,1", "0,-95,1,1", ""],
)
def test_bounds_metadata_rejects_malformed(value):
    with pytest.raises(MalformedValue) as info:
        GeoBoundingBox.from_metadata(value)
    assert info.value.key == "bounds"


def test_bounding_box_contains_and_union():
    world = GeoBoundingBox(-180, -85, 180, 85)
    small = GeoBoundingBox(-1, -1, 1, 1)
    assert world.contains(small)
    assert not small.contains(world)
    assert small.union(GeoBoundingBox(0, 0, 5, 5)) == GeoBoundingBox(-1, -1, 5, 5)
    with pytest.raises(ValueError):
        GeoBoundingBox(5, 0, 1, 1)
