"""リスト単位の処理パイプライン.

処理フロー（リスト ID ごと）:
  PENDING → FETCHING_LIST → PARSING_LIST → FETCHING_DETAILS
    → PARSING_DETAILS → PERSISTING → DONE
  いずれかの段階で失敗すると FAILED（失敗した段階を記録）。自動リトライはしない。
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from top500.cache import FetchCache
from top500.config import Settings
from top500.db import Store
from top500.errors import Top500Error
from top500.fetcher import Fetcher
from top500.models import Item, RankList, Site
from top500.scraper import item_attribute_labels, parse_item, parse_list, parse_site

logger = logging.getLogger(__name__)


class ListState(str, Enum):
    PENDING = "pending"
    FETCHING_LIST = "fetching_list"
    PARSING_LIST = "parsing_list"
    FETCHING_DETAILS = "fetching_details"
    PARSING_DETAILS = "parsing_details"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ListOutcome:
    """1 リスト分の処理結果."""

    list_id: int
    state: ListState = ListState.PENDING
    failed_stage: ListState | None = None
    error: Exception | None = None
    rows: int = 0

    @property
    def reason(self) -> str | None:
        if self.error is None:
            return None
        return f"{type(self.error).__name__}: {self.error}"


@dataclass
class RunSummary:
    """実行全体の集計."""

    outcomes: list[ListOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.state is ListState.DONE)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.state is ListState.FAILED)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class Orchestrator:
    """リスト ID の集合に対して 取得 → 抽出 → 保存 を順に実行する."""

    def __init__(
        self,
        settings: Settings,
        fetcher: Fetcher,
        store: Store,
        cache: FetchCache | None = None,
    ):
        self.settings = settings
        self.fetcher = fetcher
        self.store = store
        self.cache = cache or fetcher.cache

    def process(self, list_id: int, outcome: ListOutcome | None = None) -> ListOutcome:
        """1 リストを処理する. 失敗時は outcome を FAILED にして例外を再送出する."""
        outcome = outcome or ListOutcome(list_id)
        try:
            self._advance(outcome, ListState.FETCHING_LIST)
            self.fetcher.fetch_list(list_id)

            self._advance(outcome, ListState.PARSING_LIST)
            rank_list = parse_list(self.cache, list_id)

            sites: dict[int, Site] = {}
            items: dict[int, Item] = {}
            if self.settings.fetch_details:
                self._advance(outcome, ListState.FETCHING_DETAILS)
                self.fetcher.fetch_details(rank_list)

                self._advance(outcome, ListState.PARSING_DETAILS)
                sites, items = self._parse_details(rank_list)

            self._advance(outcome, ListState.PERSISTING)
            outcome.rows = self.store.write_list(rank_list, sites, items)
        except Exception as e:
            outcome.failed_stage = outcome.state
            outcome.state = ListState.FAILED
            outcome.error = e
            raise

        outcome.state = ListState.DONE
        return outcome

    @staticmethod
    def _advance(outcome: ListOutcome, state: ListState) -> None:
        logger.debug("リスト %d: %s → %s", outcome.list_id, outcome.state.value, state.value)
        outcome.state = state

    def _parse_details(self, rank_list: RankList) -> tuple[dict[int, Site], dict[int, Item]]:
        sites = {
            site_id: parse_site(self.cache.read(self.cache.detail_path("site", site_id)), site_id)
            for site_id in rank_list.site_ids()
        }
        items = {
            item_id: parse_item(self.cache.read(self.cache.detail_path("item", item_id)), item_id)
            for item_id in rank_list.item_ids()
        }
        return sites, items

    def run(self, list_ids: list[int], fail_fast: bool = False) -> RunSummary:
        """全リストを順に処理する.

        通常は失敗したリストを記録して次へ進む。fail_fast=True なら最初の失敗で中止する。
        """
        logger.info("=== TOP500 取得 開始: %d リスト ===", len(list_ids))
        start_time = time.time()
        summary = RunSummary()

        for list_id in list_ids:
            outcome = ListOutcome(list_id)
            summary.outcomes.append(outcome)
            try:
                self.process(list_id, outcome)
            except (Top500Error, OSError) as e:
                logger.error(
                    "リスト %d 失敗 (段階=%s): %s",
                    list_id, outcome.failed_stage.value, e,
                )
                if fail_fast:
                    raise
            logger.info(
                "進捗: %d/%d, 成功 %d, 失敗 %d",
                len(summary.outcomes), len(list_ids), summary.succeeded, summary.failed,
            )

        elapsed = time.time() - start_time
        logger.info("=== TOP500 取得 完了 ===")
        logger.info(
            "成功: %d リスト, 失敗: %d リスト, 所要時間: %.1f 秒",
            summary.succeeded, summary.failed, elapsed,
        )
        return summary

    def populate_details(self) -> tuple[int, int]:
        """キャッシュ済みの全サイト・全システムをパースして書き込む.

        Returns:
            (サイト件数, システム件数)
        """
        sites = [
            parse_site(self.cache.read(self.cache.detail_path("site", i)), i)
            for i in self.cache.cached_ids("site")
        ]
        items = [
            parse_item(self.cache.read(self.cache.detail_path("item", i)), i)
            for i in self.cache.cached_ids("item")
        ]
        self.store.write_details(sites, items)
        logger.info("サイト %d 件, システム %d 件を処理", len(sites), len(items))
        return len(sites), len(items)

    def survey_attributes(self) -> dict[str, int]:
        """キャッシュ済みの全システムページから属性ラベルを集計する."""
        labels: list[str] = []
        for item_id in self.cache.cached_ids("item"):
            html = self.cache.read(self.cache.detail_path("item", item_id))
            labels.extend(item_attribute_labels(html))

        self.store.record_attribute_labels(labels)
        counts = self.store.attribute_counts()
        logger.info("属性ラベル %d 種類を集計", len(counts))
        return counts
