"""
Low-level SQLite helpers operating on an open connection.

Nothing here manages store handles; see :mod:`tilestore.storage.tile_store`.
"""

__all__: list[str] = []
