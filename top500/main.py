"""TOP500 リスト取得: メインエントリーポイント.

処理フロー:
  1. 対象リスト ID を決める（--list で 1 件、--all で開始年から今年まで全件）
  2. リストごとに 5 ページを取得（キャッシュ済みなら再利用）
  3. ページをパースして 500 件の順位を組み立てる
  4. --details 指定時は参照されるサイト・システムの詳細ページを取得・パース
  5. 1 リスト 1 トランザクションで DB に書き込む
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date, datetime

from top500.cache import FetchCache
from top500.config import CONFLICT_POLICIES, LOG_DIR, START_YEAR, Settings
from top500.db import Store
from top500.errors import Top500Error
from top500.fetcher import Fetcher
from top500.models import compute_list_ids, list_id
from top500.pipeline import Orchestrator
from top500.scraper import parse_item, parse_site


def setup_logging(verbose: bool = False) -> None:
    """ロギングの初期設定."""
    LOG_DIR.mkdir(exist_ok=True)
    log_file = LOG_DIR / f"top500_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="top500-collect",
        description="TOP500 リストと参照されるサイト・システムを取得して SQLite に保存する",
    )
    parser.add_argument("-d", "--datadir", help="キャッシュ保存先 (既定: /tmp/top500)")
    parser.add_argument("--db", dest="db_path", help="SQLite ファイル (既定: {datadir}/top500.sqlite3)")

    target = parser.add_mutually_exclusive_group()
    target.add_argument("-l", "--list", type=int, dest="list_id", help="1 リストだけ処理 (例: 202306)")
    target.add_argument("-a", "--all", action="store_true", help="開始年から今年までの全リストを処理 (既定)")
    target.add_argument("--dump-site", type=int, metavar="SITE_ID", help="キャッシュ済みサイトをパースして表示")
    target.add_argument("--dump-item", type=int, metavar="ITEM_ID", help="キャッシュ済みシステムをパースして表示")
    target.add_argument("--populate", action="store_true", help="キャッシュ済みの詳細ページをすべて DB に書き込む")
    target.add_argument("--survey", action="store_true", help="システムページの属性ラベルを集計する")

    parser.add_argument("--start-year", type=int, default=START_YEAR, help=f"--all の開始年 (既定: {START_YEAR})")
    parser.add_argument("--no-fetch", action="store_true", default=None, help="ネットワークに接続せずキャッシュのみ使う")
    parser.add_argument("--details", dest="fetch_details", action="store_true", default=None,
                        help="サイト・システムの詳細ページも取得する")
    parser.add_argument("--workers", type=int, help="詳細ページ取得の並列数")
    parser.add_argument("--conflict-policy", choices=CONFLICT_POLICIES,
                        help="既存のサイト・システムを更新するか (update) 無視するか (ignore)")
    parser.add_argument("--fail-fast", action="store_true", help="最初の失敗で全体を中止する")
    parser.add_argument("--initdb", action="store_true", help="DB のテーブルを作り直す")
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG ログを出力する")
    return parser


def _dump(record) -> None:
    for key, value in vars(record).items():
        print(f"{key:>24}: {value}")


def run(argv: list[str] | None = None) -> int:
    """メイン処理. 終了コードを返す."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    settings = Settings.from_env(
        datadir=args.datadir,
        db_path=args.db_path,
        no_fetch=args.no_fetch,
        fetch_details=args.fetch_details,
        workers=args.workers,
        conflict_policy=args.conflict_policy,
    )
    cache = FetchCache(settings.datadir)
    cache.prepare()

    # パース結果の確認用（DB は使わない）
    if args.dump_site is not None:
        _dump(parse_site(cache.read(cache.detail_path("site", args.dump_site)), args.dump_site))
        return 0
    if args.dump_item is not None:
        _dump(parse_item(cache.read(cache.detail_path("item", args.dump_item)), args.dump_item))
        return 0

    with Store(settings.db_path, settings.conflict_policy).open(initdb=args.initdb) as store:
        orchestrator = Orchestrator(settings, Fetcher(settings, cache), store, cache)

        if args.populate:
            orchestrator.populate_details()
            return 0
        if args.survey:
            for label, count in orchestrator.survey_attributes().items():
                print(f"{count:>8}  {label}")
            return 0

        if args.list_id is not None:
            # 単体デバッグモード: エラーはそのまま表示して非 0 終了
            orchestrator.process(args.list_id)
            logger.info("リスト %d を書き込みました", args.list_id)
            return 0

        # 公開月を過ぎていないリストはまだ存在しない
        today = date.today()
        list_ids = [
            i for i in compute_list_ids(args.start_year)
            if i <= list_id(today.year, today.month)
        ]
        summary = orchestrator.run(list_ids, fail_fast=args.fail_fast)
        return 0 if summary.ok else 1


def main() -> None:
    try:
        sys.exit(run())
    except Top500Error:
        logging.getLogger(__name__).exception("処理に失敗しました")
        sys.exit(1)


if __name__ == "__main__":
    main()
