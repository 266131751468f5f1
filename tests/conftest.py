"""共通フィクスチャ."""

import pytest

from top500.cache import FetchCache
from top500.config import Settings
from top500.db import Store


@pytest.fixture
def cache(tmp_path):
    c = FetchCache(tmp_path / "data")
    c.prepare()
    return c


@pytest.fixture
def settings(tmp_path):
    return Settings(
        datadir=tmp_path / "data",
        db_path=tmp_path / "top500.sqlite3",
        request_timeout=5,
        batch_timeout=5,
    )


@pytest.fixture
def store(settings):
    s = Store(settings.db_path).open(initdb=True)
    yield s
    s.close()
