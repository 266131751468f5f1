"""TOP500 ページ取得モジュール.

取得戦略:
  1. リストページ: 1 リスト分の 5 ページを httpx.AsyncClient で同時取得
     （本文はメモリに受け取り、全ページ成功した時だけキャッシュへ書き込む）
  2. 詳細ページ（site / system）: ID ごとにキャッシュを確認し、
     無いものだけ requests で取得（ワーカー数 > 1 ならスレッドプールで並列、
     Session はスレッドごと）。本文は {name}.part に書いて成功時に置き換える
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import httpx
import requests

from top500.cache import FetchCache, PendingDocument
from top500.config import (
    ITEM_URL_TEMPLATE,
    LIST_URL_TEMPLATE,
    PAGES_PER_LIST,
    SITE_URL_TEMPLATE,
    USER_AGENT,
    Settings,
)
from top500.errors import CacheConflictError, CacheMissError, TransferError
from top500.models import RankList, split_list_id

logger = logging.getLogger(__name__)

_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

_DETAIL_URL_TEMPLATES = {
    "site": SITE_URL_TEMPLATE,
    "item": ITEM_URL_TEMPLATE,
}

_CHUNK_SIZE = 64 * 1024


@dataclass
class FetchStats:
    """詳細ページ取得の集計."""

    fetched: int = 0  # 今回転送した件数
    cached: int = 0  # キャッシュ済みでスキップした件数


def list_page_url(list_id: int, page: int) -> str:
    year, month = split_list_id(list_id)
    return LIST_URL_TEMPLATE.format(year=year, month=month, page=page)


def detail_url(kind: str, record_id: int) -> str:
    return _DETAIL_URL_TEMPLATES[kind].format(id=record_id)


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update(_HEADERS)
    return session


class Fetcher:
    """リストページ・詳細ページをキャッシュへ取得する."""

    def __init__(
        self,
        settings: Settings,
        cache: FetchCache,
        session_factory: Callable[[], requests.Session] = new_session,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.cache = cache
        self._session_factory = session_factory
        self._local = threading.local()
        self._transport = transport

    @property
    def session(self) -> requests.Session:
        """呼び出し元スレッド専用の Session."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            self._local.session = session
        return session

    # --- リストページ ---

    def fetch_list(self, list_id: int, pages: int = PAGES_PER_LIST) -> int:
        """リストの全ページをキャッシュへ取得する.

        Returns:
            今回転送したページ数（全ページキャッシュ済みなら 0）

        Raises:
            CacheMissError: no-fetch モードで未取得のページがある
            TransferError: いずれかのページの取得失敗・タイムアウト
        """
        missing = [
            page for page in range(1, pages + 1)
            if not self.cache.has(self.cache.list_page_path(list_id, page))
        ]
        if not missing:
            logger.info("リスト %d: 全ページキャッシュ済み", list_id)
            return 0

        if self.settings.no_fetch:
            raise CacheMissError(
                f"no-fetch モード: リスト {list_id} のページ {missing} が未取得です"
            )

        bodies = asyncio.run(self._fetch_list_batch(list_id, missing))
        for page, body in zip(missing, bodies):
            self.cache.store(self.cache.list_page_path(list_id, page), body)
        logger.info("リスト %d: %d ページ取得", list_id, len(missing))
        return len(missing)

    async def _fetch_list_batch(self, list_id: int, pages: list[int]) -> list[bytes]:
        async with httpx.AsyncClient(
            headers=_HEADERS,
            timeout=self.settings.request_timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            tasks = [self._fetch_page(client, list_page_url(list_id, page)) for page in pages]
            try:
                results = await asyncio.wait_for(
                    asyncio.gather(*tasks, return_exceptions=True),
                    timeout=self.settings.batch_timeout,
                )
            except asyncio.TimeoutError as e:
                raise TransferError(
                    f"リスト {list_id} の取得がタイムアウトしました "
                    f"({self.settings.batch_timeout} 秒)"
                ) from e

        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            # 成功したページも書き込まずに捨てる
            for err in errors[1:]:
                logger.error("リスト %d: %s", list_id, err)
            raise errors[0]
        return results

    async def _fetch_page(self, client: httpx.AsyncClient, url: str) -> bytes:
        logger.debug("取得中.. %s", url)
        try:
            resp = await client.get(url)
        except httpx.HTTPError as e:
            raise TransferError(f"転送失敗: {url}: {e}", url=url) from e
        if resp.status_code != 200:
            raise TransferError(
                f"HTTP ステータス異常: {resp.status_code} {url}",
                url=url,
                status=resp.status_code,
            )
        return resp.content

    # --- 詳細ページ ---

    def fetch_details(self, rank_list: RankList) -> FetchStats:
        """リストが参照する全サイト・全システムの詳細ページを取得する.

        最初に発生したエラーで全体を中止する（残りは取り消し）。
        """
        jobs = [("site", i) for i in rank_list.site_ids()]
        jobs += [("item", i) for i in rank_list.item_ids()]

        stats = FetchStats()
        if self.settings.workers == 1:
            for kind, record_id in jobs:
                self._tally(stats, self._fetch_detail(kind, record_id))
        else:
            with ThreadPoolExecutor(max_workers=self.settings.workers) as pool:
                futures = [pool.submit(self._fetch_detail, kind, i) for kind, i in jobs]
                try:
                    for future in as_completed(futures):
                        self._tally(stats, future.result())
                except BaseException:
                    for future in futures:
                        future.cancel()
                    raise

        logger.info(
            "リスト %d 詳細: 取得 %d 件, キャッシュ %d 件",
            rank_list.list_id, stats.fetched, stats.cached,
        )
        return stats

    @staticmethod
    def _tally(stats: FetchStats, transferred: bool) -> None:
        if transferred:
            stats.fetched += 1
        else:
            stats.cached += 1

    def _fetch_detail(self, kind: str, record_id: int) -> bool:
        """詳細ページ 1 件を取得する.

        Returns:
            転送した場合 True、キャッシュ済み（他の実行が取得中を含む）の場合 False
        """
        path = self.cache.detail_path(kind, record_id)
        if self.cache.has(path):
            return False

        if self.settings.no_fetch:
            raise CacheMissError(f"no-fetch モード: {kind} {record_id} が未取得です")

        try:
            pending = self._claim(path)
        except CacheConflictError as e:
            logger.info("%s", e)
            return False

        url = detail_url(kind, record_id)
        logger.info("取得中.. %s", url)
        try:
            with pending:
                self._download(url, pending)
        except requests.RequestException as e:
            status = e.response.status_code if e.response is not None else None
            raise TransferError(f"詳細ページ取得失敗: {url}: {e}", url=url, status=status) from e
        return True

    def _claim(self, path: Path) -> PendingDocument:
        pending = self.cache.reserve(path)
        if pending is None:
            raise CacheConflictError(f"取得済みまたは他の実行が取得中（キャッシュヒット扱い）: {path}")
        return pending

    def _download(self, url: str, pending: PendingDocument) -> None:
        resp = self.session.get(url, timeout=self.settings.request_timeout, stream=True)
        try:
            resp.raise_for_status()
            for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                pending.write(chunk)
        finally:
            resp.close()
