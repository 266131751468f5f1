"""TOP500 ページのスクレイピング（HTML 抽出）モジュール.

抽出戦略:
  ページ構造の固定位置（html → body → div[2] → div[1] → div[1] → table）を
  辿って対象テーブルを特定し、行・セルの位置と属性から値を読み取る。
  壊れたマークアップは許容し、空白だけのテキストノードは無視する。
"""

from __future__ import annotations

import logging
import math
import re
import warnings
from dataclasses import dataclass
from typing import Callable

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import Comment

from top500.cache import FetchCache
from top500.config import LIST_SIZE, PAGES_PER_LIST, ROWS_PER_PAGE
from top500.errors import (
    NumericConversionError,
    SchemaDriftError,
    StructuralParseError,
)
from top500.models import Item, RankEntry, RankList, Site

logger = logging.getLogger(__name__)

# 先頭の数値部分（桁区切りカンマ除去後）。単位などの後続文字列は無視する
_NUMBER_PATTERN = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?")


# ---------------------------------------------------------------------------
# 位置ベースの DOM アクセサ
# ---------------------------------------------------------------------------

def nth_child_by_tag(node, tag: str, n: int) -> Tag | None:
    """node 直下の n 番目（1始まり）の tag 要素を返す. 見つからなければ None."""
    if node is None:
        return None

    count = 0
    for child in node.children:
        if not isinstance(child, Tag) or child.name != tag:
            continue
        count += 1
        if count == n:
            return child
    return None


def nth_text_of_child(node, tag: str, n: int) -> str | None:
    """node 直下の n 番目の tag 要素について、最初のテキストノードを返す."""
    return _first_text(nth_child_by_tag(node, tag, n))


def _first_text(node: Tag | None) -> str | None:
    """node 直下の最初の空白でないテキストノード（前後空白除去）."""
    if node is None:
        return None
    for child in node.children:
        if isinstance(child, NavigableString) and not isinstance(child, Comment):
            text = child.strip()
            if text:
                return text
    return None


def _has_content(node: Tag) -> bool:
    for child in node.children:
        if isinstance(child, Tag):
            return True
        if isinstance(child, NavigableString) and not isinstance(child, Comment) and child.strip():
            return True
    return False


def _table_rows(table: Tag) -> list[Tag]:
    """table 直下（thead / tbody / tfoot 経由を含む）の tr 要素."""
    rows: list[Tag] = []
    for child in table.children:
        if not isinstance(child, Tag):
            continue
        if child.name == "tr":
            rows.append(child)
        elif child.name in ("thead", "tbody", "tfoot"):
            rows.extend(c for c in child.children if isinstance(c, Tag) and c.name == "tr")
    return rows


def _cell_text(td: Tag) -> str | None:
    """セルのテキスト. 直下のテキストノードが無ければ子孫のテキストを連結する."""
    text = _first_text(td)
    if text is not None:
        return text
    return td.get_text(" ", strip=True) or None


def _parse_document(html: str) -> BeautifulSoup:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return BeautifulSoup(html, "html.parser")


def locate_container(html: str) -> Tag:
    """本文コンテナ（html → body → div[2] → div[1] → div[1]）を返す."""
    soup = _parse_document(html)

    root = nth_child_by_tag(soup, "html", 1)
    if root is None:
        raise StructuralParseError("文書ルート (html) がありません")

    current = root
    for tag, n in (("body", 1), ("div", 2), ("div", 1), ("div", 1)):
        current = nth_child_by_tag(current, tag, n)
        if current is None:
            raise StructuralParseError(f"コンテナ要素 {tag}[{n}] がありません")
    return current


def _require_table(container: Tag) -> Tag:
    table = nth_child_by_tag(container, "table", 1)
    if table is None:
        raise StructuralParseError("テーブル要素がありません")
    return table


# ---------------------------------------------------------------------------
# 値の変換
# ---------------------------------------------------------------------------

def parse_number(text: str) -> float:
    """桁区切りを除いて数値に変換する.

    "1,234.5" → 1234.5、"22,703.00 kW" → 22703.0。
    数値で始まらない文字列・有限でない値（"1e999" など）は NumericConversionError。
    """
    m = _NUMBER_PATTERN.match(text.replace(",", ""))
    if not m:
        raise NumericConversionError(text)
    value = float(m.group(0))
    if not math.isfinite(value):
        raise NumericConversionError(text)
    return value


def trailing_id(href: str | None) -> int:
    """href の最後の "/" 以降を数値 ID として読む（例: /site/48553 → 48553）.

    末尾の形式はページ構造の前提として扱い、それ以外の URL 形は想定しない。
    """
    if not href:
        raise StructuralParseError("参照リンクの href がありません")
    tail = href[href.rfind("/") + 1:]
    try:
        return int(tail)
    except ValueError as e:
        raise StructuralParseError(f"href から ID を取得できません: {href}") from e


def normalize_label(label: str) -> str:
    """属性ラベルを小文字化し、最後の ":" 以降を取り除く."""
    label = label.strip().lower()
    pos = label.rfind(":")
    if pos >= 0:
        label = label[:pos]
    return label.strip()


# ---------------------------------------------------------------------------
# 属性ディスパッチ表
# ---------------------------------------------------------------------------

def _anchor_href(td: Tag) -> str | None:
    a = nth_child_by_tag(td, "a", 1)
    return a.get("href") if a is not None else None


def _to_site_id(td: Tag) -> int:
    return trailing_id(_anchor_href(td))


def _to_href(td: Tag) -> str | None:
    return _anchor_href(td)


def _to_text(td: Tag) -> str | None:
    return _cell_text(td)


def _to_float(td: Tag) -> float | None:
    text = _cell_text(td)
    return parse_number(text) if text is not None else None


def _to_int(td: Tag) -> int | None:
    value = _to_float(td)
    return int(value) if value is not None else None


@dataclass(frozen=True)
class AttributeSetter:
    """属性ラベル 1 つ分の setter. convert の結果を Item.field に設定する."""

    field: str
    convert: Callable[[Tag], object]

    def apply(self, item: Item, td: Tag) -> None:
        setattr(item, self.field, self.convert(td))


ATTRIBUTE_SETTERS: dict[str, AttributeSetter] = {
    "site": AttributeSetter("site_id", _to_site_id),
    "system url": AttributeSetter("url", _to_href),
    "manufacturer": AttributeSetter("manufacturer", _to_text),
    "cores": AttributeSetter("cores", _to_int),
    "memory": AttributeSetter("memory", _to_float),
    "processor": AttributeSetter("processor", _to_text),
    "interconnect": AttributeSetter("interconnect", _to_text),
    "linpack performance (rmax)": AttributeSetter("linpack", _to_float),
    "theoretical peak (rpeak)": AttributeSetter("theoretical_peak", _to_float),
    "nmax": AttributeSetter("nmax", _to_float),
    "nhalf": AttributeSetter("nhalf", _to_float),
    "hpcg [tflop/s]": AttributeSetter("hpcg", _to_float),
    "power": AttributeSetter("power", _to_float),
    "power measurement level": AttributeSetter("power_measurement_level", _to_float),
    "measured cores": AttributeSetter("measured_cores", _to_int),
    "operating system": AttributeSetter("os", _to_text),
    "compiler": AttributeSetter("compiler", _to_text),
    "math library": AttributeSetter("mathlib", _to_text),
    "mpi": AttributeSetter("mpi", _to_text),
}


# ---------------------------------------------------------------------------
# リストページ
# ---------------------------------------------------------------------------

def _parse_list_row(tr: Tag) -> RankEntry:
    td_rank = nth_child_by_tag(tr, "td", 1)
    td_site = nth_child_by_tag(tr, "td", 2)
    td_item = nth_child_by_tag(tr, "td", 3)
    if td_rank is None or td_site is None or td_item is None:
        raise StructuralParseError("リスト行のセルが不足しています")

    rank_text = nth_text_of_child(td_rank, "span", 1)
    if rank_text is None:
        raise StructuralParseError("順位の span がありません")
    try:
        rank = int(rank_text)
    except ValueError as e:
        raise StructuralParseError(f"順位を数値に変換できません: {rank_text}") from e

    a_site = nth_child_by_tag(td_site, "a", 1)
    a_item = nth_child_by_tag(td_item, "a", 1)
    if a_site is None or a_item is None:
        raise StructuralParseError(f"順位 {rank} の参照リンクがありません")

    return RankEntry(
        rank=rank,
        site_id=trailing_id(a_site.get("href")),
        item_id=trailing_id(a_item.get("href")),
        display_name=a_item.get_text(" ", strip=True) or None,
    )


def parse_list_page(html: str, rank_list: RankList, rows: int = ROWS_PER_PAGE) -> int:
    """リストの 1 ページをパースして rank_list に配置する.

    td を含まない行（見出し行）は読み飛ばし、データ行を rows 行だけ読む。
    行が足りない・セルが欠けている場合はページ全体を失敗とする。

    Returns:
        配置したエントリ数
    """
    table = _require_table(locate_container(html))
    data_rows = [tr for tr in _table_rows(table) if nth_child_by_tag(tr, "td", 1) is not None]
    if len(data_rows) < rows:
        raise StructuralParseError(
            f"リスト行が不足しています: {len(data_rows)}/{rows} (list={rank_list.list_id})"
        )

    for tr in data_rows[:rows]:
        rank_list.place(_parse_list_row(tr))
    return rows


def parse_list(
    cache: FetchCache,
    list_id: int,
    size: int = LIST_SIZE,
    pages: int = PAGES_PER_LIST,
) -> RankList:
    """キャッシュ済みの全ページからリストを組み立てる.

    Raises:
        StructuralParseError: ページの欠落・構造不一致・順位の欠番
    """
    rank_list = RankList(list_id, size=size)
    rows = size // pages

    for page in range(1, pages + 1):
        path = cache.list_page_path(list_id, page)
        if not cache.has(path):
            raise StructuralParseError(f"リストページがありません: {path}")
        try:
            parse_list_page(cache.read(path), rank_list, rows=rows)
        except StructuralParseError as e:
            raise StructuralParseError(f"{path}: {e}") from e

    missing = rank_list.missing_ranks()
    if missing:
        raise StructuralParseError(f"リスト {list_id} に欠番があります: {missing[:10]}")
    logger.info("リスト %d: %d 件をパース", list_id, rank_list.filled)
    return rank_list


# ---------------------------------------------------------------------------
# 詳細ページ
# ---------------------------------------------------------------------------

def parse_site(html: str, site_id: int) -> Site:
    """サイト詳細ページをパースする. 個別の欠落フィールドは None のまま."""
    container = locate_container(html)
    table = _require_table(container)
    rows = _table_rows(table)

    def row_td(n: int) -> Tag | None:
        return nth_child_by_tag(rows[n - 1], "td", 1) if len(rows) >= n else None

    site = Site(id=site_id)
    site.name = nth_text_of_child(container, "h1", 2)
    site.url = nth_text_of_child(row_td(1), "a", 1)
    site.segment = _first_text(row_td(2))
    site.city = _first_text(row_td(3))
    site.country = _first_text(row_td(4))
    return site


def _split_item_name(heading: str) -> tuple[str, str | None]:
    """見出しを " - " で (名称, 概要) に分ける."""
    name, sep, summary = heading.partition(" - ")
    if not sep:
        return heading.strip(), None
    return name.strip(), summary.strip()


def parse_item(html: str, item_id: int) -> Item:
    """システム詳細ページをパースする.

    Raises:
        StructuralParseError: コンテナ・テーブルが見つからない
        SchemaDriftError: 属性ディスパッチ表に無いラベルがある
    """
    container = locate_container(html)

    item = Item(id=item_id)
    heading = nth_text_of_child(container, "h1", 1)
    if heading:
        item.name, item.summary = _split_item_name(heading)

    table = _require_table(container)
    count = 0
    for tr in _table_rows(table):
        td = nth_child_by_tag(tr, "td", 1)
        if td is None or not _has_content(td):
            continue  # 項目はあるがデータなし

        raw_label = nth_text_of_child(tr, "th", 1) or ""
        label = normalize_label(raw_label)
        setter = ATTRIBUTE_SETTERS.get(label)
        if setter is None:
            raise SchemaDriftError(label, item_id)

        try:
            setter.apply(item, td)
        except NumericConversionError as e:
            logger.warning("属性をスキップ: item=%d, label=%s, %s", item_id, label, e)
            continue
        count += 1

    logger.debug("システム %d: %d 属性", item_id, count)
    return item


def item_attribute_labels(html: str) -> list[str]:
    """システム詳細ページの属性ラベル（正規化済み）をすべて返す."""
    table = _require_table(locate_container(html))
    labels = []
    for tr in _table_rows(table):
        raw_label = nth_text_of_child(tr, "th", 1)
        if raw_label:
            labels.append(normalize_label(raw_label))
    return labels
