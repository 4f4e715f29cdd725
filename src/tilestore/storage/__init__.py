"""SQLite-backed MBTiles container: metadata, blobs, writer and reader."""
