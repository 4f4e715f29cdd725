import hashlib
import sqlite3

import pytest

from tilestore import ConstraintError, TileCoordinate, create_store
from tilestore.storage.sqlite import blobs
from tilestore.storage.sqlite.schema import apply_default_pragmas, ensure_schema
from tilestore.storage.sqlite.utils import open_db, transaction

PNG = b"\x89PNG\r\n\x1a\n"


def _make_store(tmp_path):
    metadata = {
        "name": "blobs",
        "format": "png",
        "bounds": "-180,-85,180,85",
        "minzoom": 0,
        "maxzoom": 10,
    }
    return create_store(tmp_path / "tiles.mbtiles", metadata)


def _bare_connection():
    conn = open_db(":memory:")
    apply_default_pragmas(conn)
    ensure_schema(conn)
    return conn


def test_put_blob_is_idempotent():
    conn = _bare_connection()
    data = PNG + b"payload"

    first = blobs.put_blob(conn, data)
    second = blobs.put_blob(conn, data)

    assert first == (hashlib.sha256(data).hexdigest(), True)
    assert second.tile_id == first.tile_id
    assert second.created is False
    assert blobs.blob_count(conn) == 1
    assert blobs.get_blob(conn, first.tile_id) == data
    assert blobs.get_blob(conn, "0" * 64) is None


def test_link_requires_existing_blob(tmp_path):
    with _make_store(tmp_path) as store:
        with pytest.raises(ConstraintError) as info:
            store.link((0, 0, 0), "f" * 64)

        assert info.value.coord == TileCoordinate(0, 0, 0)
        assert not store.has_tile((0, 0, 0))


def test_store_blob_operations_use_xyz_rows(tmp_path):
    path = tmp_path / "tiles.mbtiles"
    with _make_store(tmp_path) as store:
        put = store.put_blob(PNG + b"linked")
        assert store.put_blob(PNG + b"linked") == (put.tile_id, False)
        assert store.get_blob(put.tile_id) == PNG + b"linked"
        assert store.get_blob("0" * 64) is None

        store.link((2, 1, 0), put.tile_id)
        assert store.get_tile((2, 1, 0)) == PNG + b"linked"

        conn = sqlite3.connect(path)
        try:
            row = conn.execute("SELECT tile_row FROM map WHERE zoom_level = 2").fetchone()
        finally:
            conn.close()
        assert row == (3,)

        assert store.unlink((2, 1, 0)) is True
        assert store.unlink((2, 1, 0)) is False
        assert store.orphan_count() == 1
        with pytest.raises(ConstraintError):
            store.put_blob("not bytes")


def test_link_replaces_and_unlink_reports():
    conn = _bare_connection()
    a = blobs.put_blob(conn, b"a").tile_id
    b = blobs.put_blob(conn, b"b").tile_id

    blobs.link(conn, 3, 1, 1, a)
    blobs.link(conn, 3, 1, 1, b)

    assert blobs.lookup(conn, 3, 1, 1) == b
    assert blobs.count_refs(conn, a) == 0
    assert blobs.orphan_stats(conn) == (1, 1)
    assert blobs.unlink(conn, 3, 1, 1) is True
    assert blobs.unlink(conn, 3, 1, 1) is False
    assert blobs.lookup(conn, 3, 1, 1) is None


def test_delete_orphans_keeps_referenced_blobs():
    conn = _bare_connection()
    keep = blobs.put_blob(conn, b"keep").tile_id
    blobs.put_blob(conn, b"orphan-one")
    blobs.put_blob(conn, b"orphan-two")
    blobs.link(conn, 0, 0, 0, keep)

    with transaction(conn):
        report = blobs.delete_orphans(conn)

    assert report == (2, len(b"orphan-one") + len(b"orphan-two"))
    assert blobs.blob_count(conn) == 1
    with transaction(conn):
        assert blobs.delete_orphans(conn) == (0, 0)


def test_identical_tiles_share_one_blob(tmp_path):
    data = PNG + b"ocean"
    with _make_store(tmp_path) as store:
        result = store.write_batch([((2, 0, 0), data), ((2, 1, 0), data), ((2, 2, 0), data)])

        assert result.tiles_written == 3
        assert result.blobs_created == 1
        assert store.blob_count() == 1
        assert store.count_tiles() == 3


def test_compaction_after_unlinking_every_reference(tmp_path):
    shared = PNG + b"shared"
    with _make_store(tmp_path) as store:
        store.write_batch([((3, 1, 1), shared), ((3, 1, 2), shared)])

        store.delete_tiles([(3, 1, 1)])
        assert store.compact().blobs_removed == 0
        assert store.get_tile((3, 1, 2)) == shared

        store.delete_tiles([(3, 1, 2)])
        assert store.orphan_count() == 1
        report = store.compact()

        assert report.blobs_removed == 1
        assert report.bytes_reclaimed == len(shared)
        assert store.blob_count() == 0


def test_overwrite_leaves_old_blob_until_compaction(tmp_path):
    with _make_store(tmp_path) as store:
        store.write_batch([((1, 0, 0), PNG + b"old")])
        store.write_batch([((1, 0, 0), PNG + b"new")])

        assert store.get_tile((1, 0, 0)) == PNG + b"new"
        assert store.blob_count() == 2
        assert store.orphan_count() == 1

        store.compact(vacuum=True)

        assert store.blob_count() == 1
        assert store.get_tile((1, 0, 0)) == PNG + b"new"


def test_shared_blob_survives_single_delete(tmp_path):
    tile = PNG + b"land"
    with _make_store(tmp_path) as store:
        store.write_batch([((5, 10, 12), tile), ((5, 10, 13), tile)])
        store.delete_tiles([(5, 10, 12)])
        store.compact()

        assert store.get_tile((5, 10, 12)) is None
        assert store.get_tile((5, 10, 13)) == tile
        assert store.blob_count() == 1


def test_same_bytes_at_two_coordinates_read_back(tmp_path):
    with _make_store(tmp_path) as store:
        store.write_batch([((2, 1, 1), b"abc")])
        store.write_batch([((2, 2, 2), b"abc")])

        assert store.blob_count() == 1
        assert store.get_tile((2, 1, 1)) == b"abc"
        assert store.get_tile((2, 2, 2)) == b"abc"
