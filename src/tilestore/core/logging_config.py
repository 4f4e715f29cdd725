# tilestore
# Copyright © 2025 Osvaldo J. Vega Rodríguez
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Logging setup for command-line tools and servers that embed tilestore.

The library itself only creates module loggers; nothing is configured until
an application calls :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__all__ = ["setup_logging", "get_log_directory", "PACKAGE_LOG", "ERROR_LOG"]

PACKAGE_LOG = "tilestore.log"
ERROR_LOG = "errors.log"

_PACKAGE_LOGGER = "tilestore"
_MB = 1024 * 1024
_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
_CONSOLE_FORMAT = "%(levelname)-8s | %(name)s | %(message)s"
_OWNED = "_tilestore_handler"


def _rotating_handler(
    path: Path, level: int, *, max_mb: int, backups: int, formatter: logging.Formatter
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path, maxBytes=max_mb * _MB, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    setattr(handler, _OWNED, True)
    return handler


def _drop_owned_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _OWNED, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(
    app_name: str = "tilestore",
    console_level: int = logging.INFO,
    log_dir: Path | str | None = None,
) -> Path:
    """
    Route package logs to rotating files and the console.

    - ``tilestore.log``: everything the package logs, DEBUG and up
      (10 MB per file, 5 backups)
    - ``errors.log``: ERROR and up from any logger (5 MB per file, 3 backups)

    Calling it again replaces the handlers it installed earlier; handlers
    added by the host application are left alone.

    Args:
        app_name: Application name used for the platform log directory
        console_level: Minimum level printed to stdout
        log_dir: Explicit directory instead of the platform default

    Returns:
        The log directory
    """
    target = Path(log_dir) if log_dir is not None else _get_log_directory(app_name)
    target.mkdir(parents=True, exist_ok=True)

    detailed = logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    _drop_owned_handlers(root_logger)
    root_logger.addHandler(
        _rotating_handler(
            target / ERROR_LOG, logging.ERROR, max_mb=5, backups=3, formatter=detailed
        )
    )

    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG)
    _drop_owned_handlers(package_logger)
    package_logger.addHandler(
        _rotating_handler(
            target / PACKAGE_LOG, logging.DEBUG, max_mb=10, backups=5, formatter=detailed
        )
    )
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    setattr(console, _OWNED, True)
    package_logger.addHandler(console)

    log = logging.getLogger(__name__)
    log.info("%s logging initialized in %s", app_name, target)
    log.debug("Platform: %s, Python: %s", sys.platform, sys.version.split()[0])
    return target


def _get_log_directory(app_name: str) -> Path:
    """
    Platform log directory.

    - Windows: %LOCALAPPDATA%\\<app>\\logs
    - macOS: ~/Library/Logs/<app>
    - elsewhere: $XDG_DATA_HOME/<app>/logs (default ~/.local/share)
    """
    home = Path.home()
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local")) / app_name / "logs"
    if sys.platform == "darwin":
        return home / "Library" / "Logs" / app_name
    return Path(os.environ.get("XDG_DATA_HOME", home / ".local" / "share")) / app_name / "logs"


def get_log_directory(app_name: str = "tilestore") -> Path:
    """Where :func:`setup_logging` would write, without creating anything."""

    return _get_log_directory(app_name)
