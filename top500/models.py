"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date

from top500.config import LIST_MONTHS, LIST_SIZE
from top500.errors import StructuralParseError


def list_id(year: int, month: int) -> int:
    """(年, 月) から YYYYMM 形式のリスト ID を作る."""
    return year * 100 + month


def split_list_id(value: int) -> tuple[int, int]:
    """リスト ID を (年, 月) に分解する."""
    return value // 100, value % 100


def compute_list_ids(start_year: int, end_year: int | None = None) -> list[int]:
    """start_year から end_year（既定: 今年）までの全リスト ID を昇順で返す.

    1 年につき 6 月・11 月の 2 件。
    """
    if end_year is None:
        end_year = date.today().year
    return [
        list_id(year, month)
        for year in range(start_year, end_year + 1)
        for month in LIST_MONTHS
    ]


@dataclass
class RankEntry:
    """リスト内の 1 行（順位 → サイト ID / システム ID）."""

    rank: int  # 1始まり
    site_id: int
    item_id: int
    display_name: str | None = None


class RankList:
    """1 回分の公開ランキング.

    容量 size の固定スロットを持ち、順位 r のエントリはスロット r-1 に置く。
    全スロットが埋まった状態だけが正しいパース結果。
    """

    def __init__(self, list_id: int, size: int = LIST_SIZE):
        self.list_id = list_id
        self.size = size
        self._slots: list[RankEntry | None] = [None] * size

    def __repr__(self) -> str:
        return f"RankList(list_id={self.list_id}, filled={self.filled}/{self.size})"

    @property
    def filled(self) -> int:
        return sum(1 for s in self._slots if s is not None)

    def place(self, entry: RankEntry) -> None:
        """順位に対応するスロットへエントリを置く."""
        if not 1 <= entry.rank <= self.size:
            raise StructuralParseError(
                f"順位が範囲外です: rank={entry.rank} (list={self.list_id})"
            )
        if self._slots[entry.rank - 1] is not None:
            raise StructuralParseError(
                f"順位が重複しています: rank={entry.rank} (list={self.list_id})"
            )
        self._slots[entry.rank - 1] = entry

    def missing_ranks(self) -> list[int]:
        return [i + 1 for i, s in enumerate(self._slots) if s is None]

    def is_complete(self) -> bool:
        return all(s is not None for s in self._slots)

    @property
    def entries(self) -> list[RankEntry]:
        """全エントリ（順位順）. 欠番があれば StructuralParseError."""
        missing = self.missing_ranks()
        if missing:
            raise StructuralParseError(
                f"リスト {self.list_id} に欠番があります: {missing[:10]}"
                f"{' ...' if len(missing) > 10 else ''}"
            )
        return list(self._slots)  # type: ignore[arg-type]

    def site_ids(self) -> list[int]:
        """参照されているサイト ID（重複なし・出現順）."""
        return list(dict.fromkeys(e.site_id for e in self.entries))

    def item_ids(self) -> list[int]:
        """参照されているシステム ID（重複なし・出現順）."""
        return list(dict.fromkeys(e.item_id for e in self.entries))

    def clear(self) -> None:
        self._slots = [None] * self.size


@dataclass
class Site:
    """サイト（設置機関）詳細レコード."""

    id: int
    name: str | None = None
    url: str | None = None
    segment: str | None = None
    city: str | None = None
    country: str | None = None

    def clear(self) -> None:
        """id 以外を未設定に戻す."""
        for f in fields(self):
            if f.name != "id":
                setattr(self, f.name, None)


@dataclass
class Item:
    """システム詳細レコード. site_id は所有関係ではなく参照."""

    id: int
    site_id: int | None = None
    name: str | None = None
    summary: str | None = None
    url: str | None = None
    manufacturer: str | None = None
    cores: int | None = None
    memory: float | None = None  # GB
    processor: str | None = None
    interconnect: str | None = None
    linpack: float | None = None  # Rmax
    theoretical_peak: float | None = None  # Rpeak
    nmax: float | None = None
    nhalf: float | None = None
    hpcg: float | None = None  # TFlop/s
    power: float | None = None  # kW
    power_measurement_level: float | None = None
    measured_cores: int | None = None
    os: str | None = None
    compiler: str | None = None
    mathlib: str | None = None
    mpi: str | None = None

    def clear(self) -> None:
        """id 以外を未設定に戻す."""
        for f in fields(self):
            if f.name != "id":
                setattr(self, f.name, None)
