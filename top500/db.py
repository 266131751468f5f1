"""SQLite データベース操作モジュール.

テーブル:
  site    : サイト詳細（id はソース側の ID）
  item    : システム詳細（id はソース側の ID、site_id は site への参照）
  ranking : リストごとの順位行（UNIQUE(list_id, rank, item_id)）
  attribute_survey: システムページの属性ラベル出現数（調査用）

1 リスト分の書き込みは 1 トランザクションで行い、失敗時は全体をロールバックする。
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import astuple, fields
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from top500.errors import PersistenceError
from top500.models import Item, RankList, Site

logger = logging.getLogger(__name__)

SCHEMA = """
drop table if exists ranking;
drop table if exists item;
drop table if exists site;
drop table if exists attribute_survey;

create table site (
 id integer primary key not null,
 name text,
 url text,
 segment text,
 city text,
 country text,
 unique(id)
);

create table item (
 id integer primary key not null,
 site_id integer references site(id),
 name text,
 summary text,
 url text,
 manufacturer text,
 cores integer,
 memory float,
 processor text,
 interconnect text,
 linpack float,
 theoretical_peak float,
 nmax float,
 nhalf float,
 hpcg float, -- tflop/s
 power float,
 power_measurement_level float,
 measured_cores integer,
 os text,
 compiler text,
 mathlib text,
 mpi text,
 unique(id)
);

create table ranking (
 id integer primary key not null,
 list_id integer not null,
 rank integer not null,
 item_id integer not null references item(id),
 site_id integer not null references site(id),
 unique(list_id, rank, item_id)
);

create table attribute_survey (
 id integer primary key not null,
 label text not null,
 count integer not null default 1,
 unique(label)
);
"""

TABLES = ("site", "item", "ranking", "attribute_survey")

_SITE_COLUMNS = [f.name for f in fields(Site)]
_ITEM_COLUMNS = [f.name for f in fields(Item)]


def _upsert_sql(table: str, columns: list[str], policy: str) -> str:
    """自然キー (id) 衝突時の動作をポリシーに応じて組み立てる.

    update: 値のある列だけ上書き（id だけのスタブ行で既存値を消さない）
    ignore: 何もしない
    """
    placeholders = ", ".join("?" for _ in columns)
    sql = f"insert into {table} ({', '.join(columns)}) values ({placeholders})\n"
    if policy == "ignore":
        return sql + "on conflict(id) do nothing"

    assignments = ", ".join(
        f"{c} = coalesce(excluded.{c}, {table}.{c})" for c in columns if c != "id"
    )
    return sql + f"on conflict(id) do update set {assignments}"


_STUB_SITE_SQL = "insert or ignore into site (id) values (?)"
_STUB_ITEM_SQL = "insert or ignore into item (id, site_id) values (?, ?)"
_RANKING_SQL = (
    "insert into ranking (list_id, rank, item_id, site_id) values (?, ?, ?, ?)\n"
    "on conflict(list_id, rank, item_id) do {action}"
)
_SURVEY_SQL = (
    "insert into attribute_survey (label) values (?)\n"
    "on conflict(label) do update set count = count + 1"
)


class Store:
    """TOP500 データの永続化."""

    def __init__(self, db_path: Path | str, conflict_policy: str = "update"):
        if conflict_policy not in ("update", "ignore"):
            raise ValueError(f"不明な conflict_policy: {conflict_policy}")
        self.db_path = str(db_path)
        self.conflict_policy = conflict_policy
        self._conn: sqlite3.Connection | None = None

        self._site_sql = _upsert_sql("site", _SITE_COLUMNS, conflict_policy)
        self._item_sql = _upsert_sql("item", _ITEM_COLUMNS, conflict_policy)
        self._ranking_sql = _RANKING_SQL.format(
            action="nothing" if conflict_policy == "ignore"
            else "update set site_id = excluded.site_id"
        )

    def __enter__(self) -> Store:
        if self._conn is None:
            self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("データベースが開かれていません")
        return self._conn

    def open(self, initdb: bool = False) -> Store:
        """データベースを開く. initdb=True かテーブルが無ければスキーマを作成する."""
        try:
            # トランザクションは begin / commit / rollback で明示的に管理する
            self._conn = sqlite3.connect(
                self.db_path, isolation_level=None, check_same_thread=False
            )
            self._conn.execute("pragma foreign_keys = on")
            self._conn.execute("pragma temp_store = 2")
        except sqlite3.Error as e:
            raise PersistenceError(f"データベースを開けません: {self.db_path}: {e}") from e

        if initdb or not self._has_schema():
            self.init_schema()
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _has_schema(self) -> bool:
        row = self.conn.execute(
            "select count(*) from sqlite_master where type = 'table' and name = 'ranking'"
        ).fetchone()
        return row[0] > 0

    def init_schema(self) -> None:
        """全テーブルを作り直す."""
        with self.transaction() as cur:
            for statement in SCHEMA.split(";"):
                if statement.strip():
                    cur.execute(statement)
        logger.info("スキーマを初期化: %s", self.db_path)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """1 トランザクション. 例外時はロールバックし PersistenceError にして送出."""
        cur = self.conn.cursor()
        cur.execute("begin transaction")
        try:
            yield cur
        except sqlite3.Error as e:
            cur.execute("rollback transaction")
            raise PersistenceError(f"DB 書き込み失敗（ロールバック）: {e}") from e
        except BaseException:
            cur.execute("rollback transaction")
            raise
        else:
            cur.execute("commit transaction")
        finally:
            cur.close()

    # --- 書き込み ---

    def _upsert_details(
        self,
        cur: sqlite3.Cursor,
        sites: Iterable[Site],
        items: Iterable[Item],
    ) -> None:
        sites = list(sites)
        items = list(items)
        cur.executemany(self._site_sql, [astuple(s) for s in sites])

        # システムが参照するサイトが未登録なら先にスタブを入れる
        known = {s.id for s in sites}
        extra = {i.site_id for i in items if i.site_id is not None} - known
        cur.executemany(_STUB_SITE_SQL, [(site_id,) for site_id in sorted(extra)])

        cur.executemany(self._item_sql, [astuple(i) for i in items])

    def write_list(
        self,
        rank_list: RankList,
        sites: Mapping[int, Site] | None = None,
        items: Mapping[int, Item] | None = None,
    ) -> int:
        """1 リスト分の順位行と、参照されるサイト・システムを書き込む.

        詳細レコードが無い ID は id だけのスタブ行を挿入する。
        サイト → システム → 順位の順に挿入し、全体を 1 トランザクションで行う。

        Returns:
            書き込んだ順位行数
        """
        sites = sites or {}
        items = items or {}
        entries = rank_list.entries

        with self.transaction() as cur:
            self._upsert_details(cur, sites.values(), items.values())
            cur.executemany(
                _STUB_SITE_SQL,
                [(e.site_id,) for e in entries if e.site_id not in sites],
            )
            cur.executemany(
                _STUB_ITEM_SQL,
                [(e.item_id, e.site_id) for e in entries if e.item_id not in items],
            )
            cur.executemany(
                self._ranking_sql,
                [(rank_list.list_id, e.rank, e.item_id, e.site_id) for e in entries],
            )

        logger.info("ranking に %d 件書き込み (list=%d)", len(entries), rank_list.list_id)
        return len(entries)

    def write_details(self, sites: Iterable[Site], items: Iterable[Item]) -> None:
        """サイト・システムの詳細だけを書き込む."""
        sites = list(sites)
        items = list(items)
        with self.transaction() as cur:
            self._upsert_details(cur, sites, items)
        logger.info("site %d 件, item %d 件を書き込み", len(sites), len(items))

    def record_attribute_labels(self, labels: Iterable[str]) -> None:
        """属性ラベルの出現数を加算する."""
        with self.transaction() as cur:
            cur.executemany(_SURVEY_SQL, [(label,) for label in labels])

    # --- 参照 ---

    def count_rows(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"不明なテーブル: {table}")
        return self.conn.execute(f"select count(*) from {table}").fetchone()[0]

    def list_ids(self) -> list[int]:
        """書き込み済みのリスト ID."""
        rows = self.conn.execute("select distinct list_id from ranking order by list_id")
        return [r[0] for r in rows]

    def attribute_counts(self) -> dict[str, int]:
        rows = self.conn.execute("select label, count from attribute_survey order by label")
        return {label: count for label, count in rows}
