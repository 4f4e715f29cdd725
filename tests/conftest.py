import pytest

from tilestore.app import flags


@pytest.fixture(autouse=True)
def _isolated_feature_flags(monkeypatch):
    monkeypatch.delenv(flags.ENV_VAR, raising=False)
    flags.reload()
    yield
    flags.reload()
