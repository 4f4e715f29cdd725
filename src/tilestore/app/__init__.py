"""Runtime configuration helpers."""

from importlib import import_module

__all__ = ["all_enabled", "is_enabled", "reload"]


def __getattr__(name: str):
    if name in {"all_enabled", "is_enabled", "reload"}:
        module = import_module("tilestore.app.flags")
        value = getattr(module, name)
    else:
        raise AttributeError(f"module 'tilestore.app' has no attribute {name!r}")
    globals()[name] = value
    return value
