import gzip
import json
import sqlite3

import pytest

from tilestore import (
    OutOfRange,
    ReadError,
    StoreError,
    TileCoordinate,
    VectorLayer,
    VectorTilesetDescriptor,
    create_store,
    open_store,
)

PNG = b"\x89PNG\r\n\x1a\n"
JPEG = b"\xff\xd8\xff\xe0"


def _metadata(**overrides):
    values = {
        "name": "reader",
        "format": "png",
        "bounds": "-180,-85,180,85",
        "minzoom": 0,
        "maxzoom": 5,
    }
    values.update(overrides)
    return values


def _make_store(tmp_path, **overrides):
    return create_store(tmp_path / "tiles.mbtiles", _metadata(**overrides))


def _raw(path):
    return sqlite3.connect(path, isolation_level=None)


def test_get_tile_round_trip_and_absent(tmp_path):
    with _make_store(tmp_path) as store:
        store.write_batch([((2, 1, 3), PNG + b"tile")])

        assert store.get_tile((2, 1, 3)) == PNG + b"tile"
        assert store.get_tile(TileCoordinate(2, 1, 0)) is None
        assert store.has_tile((2, 1, 3))
        assert not store.has_tile((2, 1, 0))


def test_get_tile_out_of_range_is_rejected_before_lookup(tmp_path):
    with _make_store(tmp_path) as store:
        with pytest.raises(OutOfRange) as info:
            store.get_tile((5, 999_999, 0))
        assert info.value.coord == TileCoordinate(5, 999_999, 0)


def test_enumeration_is_a_snapshot(tmp_path):
    with _make_store(tmp_path) as store:
        store.write_batch([((1, 0, 0), PNG + b"a"), ((1, 1, 0), PNG + b"b")])

        first = store.iter_tiles()
        store.write_batch([((1, 1, 1), PNG + b"c")])
        second = store.iter_tiles()

        first_coords = [coord for coord, _ in first]
        second_coords = [coord for coord, _ in second]

        assert TileCoordinate(1, 1, 1) not in first_coords
        assert TileCoordinate(1, 1, 1) in second_coords
        assert first.count == 2
        assert second.count == 3
        assert first.closed and second.closed


def test_enumeration_order_uses_storage_rows(tmp_path):
    with _make_store(tmp_path) as store:
        store.write_batch(
            [
                ((2, 1, 0), PNG + b"top"),
                ((1, 0, 0), PNG + b"z1"),
                ((2, 1, 3), PNG + b"bottom"),
                ((2, 0, 2), PNG + b"left"),
            ]
        )
        coords = [coord for coord, _ in store.iter_tiles()]

    # rows ascend in storage order, which descends in XYZ order
    assert coords == [
        TileCoordinate(1, 0, 0),
        TileCoordinate(2, 0, 2),
        TileCoordinate(2, 1, 3),
        TileCoordinate(2, 1, 0),
    ]


def test_zoom_filters(tmp_path):
    with _make_store(tmp_path) as store:
        store.write_batch(
            [((0, 0, 0), PNG + b"0"), ((1, 0, 0), PNG + b"1"), ((3, 2, 2), PNG + b"3")]
        )

        assert [c.zoom for c, _ in store.iter_tiles(1)] == [1]
        assert [c.zoom for c, _ in store.iter_tiles((1, 3))] == [1, 3]
        assert store.count_tiles() == 3
        assert store.count_tiles((0, 1)) == 2
        assert store.count_tiles(4) == 0

        with pytest.raises(OutOfRange):
            store.iter_tiles(31)
        with pytest.raises(ValueError):
            store.count_tiles((3, 1))
        with pytest.raises(TypeError):
            store.count_tiles("2")


def test_cursor_context_manager_releases_snapshot(tmp_path):
    with _make_store(tmp_path) as store:
        store.write_batch([((1, 0, 0), PNG + b"a"), ((1, 1, 0), PNG + b"b")])

        with store.iter_tiles() as cursor:
            coord, data = next(cursor)
            assert coord == TileCoordinate(1, 0, 0)
            assert data == PNG + b"a"

        assert cursor.closed
        assert list(cursor) == []


def test_tile_index_reports_xyz_rows(tmp_path):
    with _make_store(tmp_path) as store:
        store.write_batch([((2, 1, 0), PNG + b"top"), ((2, 3, 3), PNG + b"corner!")])
        df = store.tile_index()

    assert list(df.columns) == ["zoom", "column", "row", "tile_id", "size"]
    assert len(df.index) == 2
    by_column = df.set_index("column")
    assert by_column.loc[1, "row"] == 0
    assert by_column.loc[3, "row"] == 3
    assert by_column.loc[3, "size"] == len(PNG + b"corner!")


def test_summary_reports_declared_values(tmp_path):
    with _make_store(tmp_path, bounds="-10,-10,10,10", minzoom=1, maxzoom=4) as store:
        store.write_batch([((0, 0, 0), PNG + b"x")])
        summary = store.summary()

    assert summary.zoom_range == (1, 4)
    assert summary.bounds.as_tuple() == (-10.0, -10.0, 10.0, 10.0)
    assert summary.format == "png"


def test_verify_summary_consistent_store(tmp_path):
    with _make_store(tmp_path, bounds="-10,-10,10,10", minzoom=0, maxzoom=1) as store:
        store.write_batch([((0, 0, 0), PNG + b"w"), ((1, 0, 0), PNG + b"nw")])
        report = store.verify_summary()

    assert report.ok, report.discrepancies
    assert report.observed_zoom_range == (0, 1)
    assert report.tile_count == 2
    assert report.blob_count == 2
    assert report.orphan_blobs == 0


def test_verify_summary_reports_disagreements(tmp_path):
    with _make_store(tmp_path, bounds="-170,-80,170,80", minzoom=0, maxzoom=5) as store:
        store.write_batch([((3, 0, 0), JPEG + b"x")])
        report = store.verify_summary()

        assert not report.ok
        assert report.fields() == {"zoom_range", "bounds", "format"}
        assert store.summary().zoom_range == (0, 5)


def test_verify_summary_empty_store(tmp_path):
    with _make_store(tmp_path) as store:
        report = store.verify_summary()
    assert report.fields() == {"tiles"}
    assert report.observed_bounds is None


def test_verify_summary_flags_vector_layer_zooms(tmp_path):
    descriptor = VectorTilesetDescriptor(
        vector_layers=[VectorLayer(id="roads", minzoom=0, maxzoom=9)]
    )
    metadata = _metadata(format="pbf", json=descriptor)
    with create_store(tmp_path / "vector.mbtiles", metadata) as store:
        store.write_batch([((z, 0, 0), gzip.compress(b"mvt")) for z in range(6)])
        report = store.verify_summary()

    assert report.fields() == {"json"}


def test_verify_reads_detects_corrupted_blob(tmp_path):
    path = tmp_path / "tiles.mbtiles"
    with create_store(path, _metadata()) as store:
        store.write_batch([((1, 0, 0), PNG + b"intact")])

    conn = _raw(path)
    conn.execute("UPDATE images SET tile_data = ?", (PNG + b"tampered",))
    conn.close()

    with open_store(path) as store:
        assert store.get_tile((1, 0, 0)) == PNG + b"tampered"

    with open_store(path, verify_reads=True) as store:
        with pytest.raises(ReadError) as info:
            store.get_tile((1, 0, 0))
        assert info.value.coord == TileCoordinate(1, 0, 0)
        with pytest.raises(ReadError):
            list(store.iter_tiles())


def test_verify_reads_from_environment(tmp_path, monkeypatch):
    from tilestore.app import flags

    monkeypatch.setenv(flags.ENV_VAR, "verify_reads")
    flags.reload()
    with _make_store(tmp_path) as store:
        assert store.reader.verify_reads is True
    with create_store(tmp_path / "other.mbtiles", _metadata(), verify_reads=False) as store:
        assert store.reader.verify_reads is False


def test_mapping_to_missing_blob_is_a_read_error(tmp_path):
    path = tmp_path / "tiles.mbtiles"
    create_store(path, _metadata()).close()

    conn = _raw(path)
    conn.execute("INSERT INTO map VALUES (0, 0, 0, ?)", ("0" * 64,))
    conn.close()

    with open_store(path) as store:
        with pytest.raises(ReadError):
            store.get_tile((0, 0, 0))


def test_reads_after_close_raise_read_error(tmp_path):
    store = _make_store(tmp_path)
    store.close()
    store.close()

    with pytest.raises(ReadError) as info:
        store.get_tile((0, 0, 0))
    assert isinstance(info.value.__cause__, StoreError)


def test_close_releases_unfinished_cursors(tmp_path):
    store = _make_store(tmp_path)
    store.write_batch([((1, 0, 0), PNG + b"a"), ((1, 1, 0), PNG + b"b")])
    finished = store.iter_tiles()
    list(finished)
    cursor = store.iter_tiles()
    next(cursor)
    assert store.pool.open_snapshots == 1

    store.close()

    assert store.pool.open_snapshots == 0
    with pytest.raises(ReadError):
        next(cursor)
    assert cursor.closed


def test_grids_round_trip(tmp_path):
    grid = gzip.compress(json.dumps({"grid": [" "], "keys": [""]}).encode())
    with _make_store(tmp_path) as store:
        store.put_grid((2, 1, 1), grid)
        store.put_grid_data((2, 1, 1), "48", {"NAME": "Lake"})
        store.put_grid_data((2, 1, 1), "12", '{"NAME":"River"}')

        assert store.get_grid((2, 1, 1)) == grid
        assert store.get_grid((2, 1, 2)) is None
        assert json.loads(store.get_grid_data((2, 1, 1), "48")) == {"NAME": "Lake"}
        assert store.get_grid_data((2, 1, 1), "99") is None
        assert store.grid_keys((2, 1, 1)) == ["12", "48"]


def test_in_memory_store():
    with create_store(":memory:", _metadata()) as store:
        store.write_batch([((1, 1, 1), PNG + b"m")])
        assert store.path is None
        assert store.get_tile((1, 1, 1)) == PNG + b"m"
        assert [coord for coord, _ in store.iter_tiles()] == [TileCoordinate(1, 1, 1)]
        assert store.count_tiles() == 1
