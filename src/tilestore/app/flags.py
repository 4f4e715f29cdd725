"""Feature flags read from the ``TILESTORE_FEATURES`` environment variable.

The variable holds comma separated tokens: ``name`` or ``name=on`` enables a
flag, ``!name``, ``-name`` or ``name=off`` disables it. Later tokens override
earlier ones. Recognised flags are listed in :data:`KNOWN_FLAGS`; unknown
names are kept so tools built on the package can define their own.
"""

from __future__ import annotations

import os
from functools import lru_cache

ENV_VAR = "TILESTORE_FEATURES"

CLOUD_SAFE = "cloud_safe"
VERIFY_READS = "verify_reads"

KNOWN_FLAGS: dict[str, str] = {
    CLOUD_SAFE: "DELETE journal and FULL sync instead of WAL (synced folders)",
    VERIFY_READS: "re-hash blob bytes on every read and fail on mismatch",
}

_SWITCH_WORDS = {
    "1": True,
    "true": True,
    "on": True,
    "yes": True,
    "enable": True,
    "enabled": True,
    "0": False,
    "false": False,
    "off": False,
    "no": False,
    "disable": False,
    "disabled": False,
}


def flag_key(name: str) -> str:
    """Canonical spelling of a flag name (``Verify-Reads`` -> ``verify_reads``)."""

    return name.strip().lower().replace("-", "_")


def _parse_token(token: str) -> tuple[str, bool] | None:
    if token[0] in "!-":
        return flag_key(token[1:]), False
    name, sep, word = token.partition("=")
    if not sep:
        return flag_key(name), True
    state = _SWITCH_WORDS.get(word.strip().lower())
    if state is None:
        return None
    return flag_key(name), state


def parse_features(raw: str) -> dict[str, bool]:
    """Parse a ``TILESTORE_FEATURES`` value; malformed tokens are skipped."""

    features: dict[str, bool] = {}
    for token in (part.strip() for part in raw.split(",")):
        if not token:
            continue
        parsed = _parse_token(token)
        if parsed is not None and parsed[0]:
            features[parsed[0]] = parsed[1]
    return features


@lru_cache(maxsize=1)
def _cached_flags(env_value: str | None = None) -> dict[str, bool]:
    if env_value is None:
        env_value = os.environ.get(ENV_VAR, "")
    return parse_features(env_value)


def reload() -> None:
    """Forget the cached environment value (tests change it at runtime)."""

    _cached_flags.cache_clear()


def all_enabled(env_value: str | None = None) -> dict[str, bool]:
    """Copy of the parsed flag map, from ``env_value`` or the environment."""

    return dict(_cached_flags(env_value))


def is_enabled(flag: str, *, default: bool = False) -> bool:
    if not flag:
        raise ValueError("Flag name must be a non-empty string")
    return _cached_flags().get(flag_key(flag), default)


def resolve(flag: str, override: bool | None) -> bool:
    """Explicit keyword arguments win over the environment."""

    if override is not None:
        return bool(override)
    return is_enabled(flag)
