import logging

import pytest

from tilestore.core.logging_config import get_log_directory, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    package = logging.getLogger("tilestore")
    root_handlers = list(root.handlers)
    root_level = root.level
    yield
    for handler in list(package.handlers):
        package.removeHandler(handler)
        handler.close()
    package.setLevel(logging.NOTSET)
    for handler in list(root.handlers):
        if handler not in root_handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(root_level)


def _flush():
    for logger in (logging.getLogger(), logging.getLogger("tilestore")):
        for handler in logger.handlers:
            handler.flush()


def test_setup_logging_writes_package_and_error_logs(tmp_path, restore_logging):
    target = setup_logging(log_dir=tmp_path / "logs", console_level=logging.WARNING)

    logging.getLogger("tilestore.storage.writer").debug("debug detail %d", 7)
    logging.getLogger("somewhere.else").error("outside failure")
    _flush()

    assert target == tmp_path / "logs"
    app_log = (target / "tilestore.log").read_text(encoding="utf-8")
    error_log = (target / "errors.log").read_text(encoding="utf-8")
    assert "debug detail 7" in app_log
    assert "outside failure" in error_log
    assert "debug detail" not in error_log


def test_setup_logging_is_repeatable(tmp_path, restore_logging):
    setup_logging(log_dir=tmp_path)
    setup_logging(log_dir=tmp_path)

    package = logging.getLogger("tilestore")
    marked = [h for h in logging.getLogger().handlers if getattr(h, "_tilestore_handler", False)]
    assert len(package.handlers) == 2
    assert len(marked) == 1


def test_log_directory_is_per_platform(monkeypatch, tmp_path):
    monkeypatch.setattr("sys.platform", "linux")
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert get_log_directory("tiles") == tmp_path / "tiles" / "logs"
