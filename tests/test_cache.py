"""cache モジュールのユニットテスト."""

import os
import time
from unittest.mock import patch

import pytest

from top500.cache import FetchCache


class TestPaths:
    """キャッシュ配置のテスト."""

    def test_layout(self, tmp_path):
        cache = FetchCache(tmp_path)

        assert cache.list_page_path(202306, 3) == tmp_path / "list" / "202306.3.html"
        assert cache.detail_path("site", 48553) == tmp_path / "site" / "48553.html"
        assert cache.detail_path("item", 179807) == tmp_path / "item" / "179807.html"

    def test_unknown_kind(self, tmp_path):
        with pytest.raises(ValueError):
            FetchCache(tmp_path).detail_path("list", 1)

    def test_prepare(self, tmp_path):
        FetchCache(tmp_path / "data").prepare()

        for kind in ("list", "site", "item"):
            assert (tmp_path / "data" / kind).is_dir()


class TestHas:
    """取得済み判定のテスト."""

    def test_missing(self, cache):
        assert not cache.has(cache.detail_path("site", 1))

    def test_zero_byte_is_not_fetched(self, cache):
        path = cache.detail_path("site", 1)
        path.touch()
        assert not cache.has(path)

    def test_non_empty(self, cache):
        path = cache.detail_path("site", 1)
        path.write_text("<html></html>")
        assert cache.has(path)


class TestReserve:
    """reserve（取得担当の予約）のテスト."""

    def test_created(self, cache):
        path = cache.detail_path("item", 1)

        pending = cache.reserve(path)

        assert pending is not None
        assert cache.part_path(path).exists()
        assert not path.exists()
        pending.abandon()

    def test_already_exists(self, cache):
        path = cache.detail_path("item", 1)
        path.write_text("<html></html>")

        assert cache.reserve(path) is None
        assert path.read_text() == "<html></html>"

    def test_two_caches_race_on_one_id(self, cache):
        """別の実行が取得中の ID は予約できず、キャッシュヒット扱いになること."""
        other = FetchCache(cache.datadir)
        path = cache.detail_path("item", 1)

        pending = cache.reserve(path)
        assert pending is not None
        assert other.reserve(path) is None

        pending.write(b"<html>first</html>")
        pending.commit()

        assert other.reserve(path) is None
        assert path.read_bytes() == b"<html>first</html>"
        assert not cache.part_path(path).exists()

    def test_in_progress_is_not_fetched(self, cache):
        """転送中の本文は本来のパスに現れないこと."""
        path = cache.detail_path("item", 1)
        pending = cache.reserve(path)
        pending.write(b"<html><body>trunc")

        assert not cache.has(path)
        assert cache.cached_ids("item") == []
        pending.abandon()

    def test_abandon_on_error(self, cache):
        path = cache.detail_path("item", 1)

        with pytest.raises(RuntimeError):
            with cache.reserve(path) as pending:
                pending.write(b"<html>")
                raise RuntimeError("connection reset")

        assert not path.exists()
        assert not cache.part_path(path).exists()
        assert cache.reserve(path) is not None

    def test_stale_part_file(self, cache):
        """中断した実行の古い .part は取り直し対象になること."""
        path = cache.detail_path("item", 1)
        part = cache.part_path(path)
        part.write_bytes(b"<html><body>trunc")
        old = time.time() - cache.stale_part_age - 60
        os.utime(part, (old, old))

        pending = cache.reserve(path)

        assert pending is not None
        pending.abandon()

    def test_zero_byte_final_file(self, cache):
        path = cache.detail_path("item", 1)
        path.touch()

        with cache.reserve(path) as pending:
            pending.write(b"<html></html>")

        assert path.read_bytes() == b"<html></html>"


class TestStore:
    """store（一括書き込み）のテスト."""

    def test_store(self, cache):
        path = cache.list_page_path(202306, 1)
        path.write_bytes(b"old")

        cache.store(path, b"<html>page</html>")

        assert path.read_bytes() == b"<html>page</html>"
        assert [p.name for p in path.parent.iterdir()] == [path.name]

    def test_failed_write_leaves_nothing(self, cache):
        path = cache.list_page_path(202306, 1)

        with patch("top500.cache.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                cache.store(path, b"<html>page</html>")

        assert list(path.parent.iterdir()) == []


class TestCachedIds:
    """cached_ids のテスト."""

    def test_cached_ids(self, cache):
        for record_id in (3, 1, 2):
            cache.detail_path("site", record_id).write_text("<html></html>")
        cache.detail_path("site", 4).touch()
        (cache.datadir / "site" / "notes.html").write_text("x")

        assert cache.cached_ids("site") == [1, 2, 3]
        assert cache.cached_ids("item") == []

    def test_discard(self, cache):
        path = cache.detail_path("site", 1)
        path.write_text("x")
        cache.discard(path)
        cache.discard(path)

        assert not path.exists()
