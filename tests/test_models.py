"""models モジュールのユニットテスト."""

import pytest

from top500.errors import StructuralParseError
from top500.models import (
    Item,
    RankEntry,
    RankList,
    Site,
    compute_list_ids,
    list_id,
    split_list_id,
)


class TestListIds:
    """リスト ID 計算のテスト."""

    def test_list_id(self):
        assert list_id(2023, 6) == 202306
        assert split_list_id(202311) == (2023, 11)

    def test_two_per_year(self):
        assert compute_list_ids(1993, 1994) == [199306, 199311, 199406, 199411]

    def test_default_end_year(self):
        """既定では今年までを含むこと."""
        from datetime import date

        ids = compute_list_ids(1993)
        assert len(ids) == (date.today().year - 1993 + 1) * 2
        assert ids[0] == 199306
        assert ids[-1] == date.today().year * 100 + 11


class TestRankList:
    """RankList のテスト."""

    def test_place_by_rank(self):
        rank_list = RankList(202306, size=3)
        rank_list.place(RankEntry(rank=2, site_id=10, item_id=20))
        rank_list.place(RankEntry(rank=1, site_id=10, item_id=21))

        assert rank_list.filled == 2
        assert rank_list.missing_ranks() == [3]
        assert not rank_list.is_complete()

    def test_entries_require_complete(self):
        rank_list = RankList(202306, size=2)
        rank_list.place(RankEntry(rank=1, site_id=10, item_id=20))

        with pytest.raises(StructuralParseError):
            rank_list.entries

    def test_rank_out_of_range(self):
        rank_list = RankList(202306, size=2)
        with pytest.raises(StructuralParseError):
            rank_list.place(RankEntry(rank=3, site_id=1, item_id=1))
        with pytest.raises(StructuralParseError):
            rank_list.place(RankEntry(rank=0, site_id=1, item_id=1))

    def test_duplicate_rank(self):
        rank_list = RankList(202306, size=2)
        rank_list.place(RankEntry(rank=1, site_id=1, item_id=1))
        with pytest.raises(StructuralParseError):
            rank_list.place(RankEntry(rank=1, site_id=2, item_id=2))

    def test_distinct_ids(self):
        rank_list = RankList(202306, size=3)
        rank_list.place(RankEntry(rank=1, site_id=7, item_id=70))
        rank_list.place(RankEntry(rank=2, site_id=5, item_id=50))
        rank_list.place(RankEntry(rank=3, site_id=7, item_id=71))

        assert rank_list.site_ids() == [7, 5]
        assert rank_list.item_ids() == [70, 50, 71]

    def test_clear(self):
        rank_list = RankList(202306, size=1)
        rank_list.place(RankEntry(rank=1, site_id=1, item_id=1))
        rank_list.clear()

        assert rank_list.filled == 0
        assert rank_list.missing_ranks() == [1]


class TestRecordClear:
    """Site / Item の clear のテスト."""

    def test_site_clear_keeps_id(self):
        site = Site(id=48553, name="ORNL", country="United States")
        site.clear()

        assert site == Site(id=48553)

    def test_item_clear_keeps_id(self):
        item = Item(id=179807, site_id=48553, name="Frontier", cores=8699904)
        item.clear()

        assert item == Item(id=179807)
