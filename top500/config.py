"""設定モジュール: 環境変数・定数定義."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- TOP500 ---
BASE_URL = "https://www.top500.org"
LIST_URL_TEMPLATE = BASE_URL + "/list/{year}/{month:02d}/?page={page}"
SITE_URL_TEMPLATE = BASE_URL + "/site/{id}"
ITEM_URL_TEMPLATE = BASE_URL + "/system/{id}"

# --- リスト構成 ---
START_YEAR = 1993
LIST_MONTHS = (6, 11)  # 6月 / 11月の年 2 回公開
LIST_SIZE = 500
PAGES_PER_LIST = 5
ROWS_PER_PAGE = 100

# --- User-Agent ---
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

# --- リクエスト設定 ---
REQUEST_TIMEOUT = 30  # 秒（1 転送あたり）
BATCH_TIMEOUT = 120  # 秒（リスト 5 ページ一括取得あたり）
DETAIL_WORKERS = 1

# --- 保存先 ---
DEFAULT_DATADIR = "/tmp/top500"

# --- DB ---
CONFLICT_POLICIES = ("update", "ignore")

# --- ログ ---
LOG_DIR = Path(__file__).resolve().parent.parent / "logs"


@dataclass
class Settings:
    """実行時設定. Fetcher / Store / Orchestrator へ明示的に渡す."""

    datadir: Path
    db_path: Path
    no_fetch: bool = False
    fetch_details: bool = False
    workers: int = DETAIL_WORKERS
    request_timeout: float = REQUEST_TIMEOUT
    batch_timeout: float = BATCH_TIMEOUT
    conflict_policy: str = "update"

    def __post_init__(self) -> None:
        self.datadir = Path(self.datadir)
        self.db_path = Path(self.db_path)
        if self.conflict_policy not in CONFLICT_POLICIES:
            raise ValueError(f"不明な conflict_policy: {self.conflict_policy}")
        if self.workers < 1:
            raise ValueError(f"workers は 1 以上: {self.workers}")

    @classmethod
    def from_env(cls, **overrides) -> Settings:
        """環境変数（.env 含む）から設定を組み立てる.

        Args:
            **overrides: None 以外の値は環境変数より優先される（CLI 引数用）

        Environment:
            TOP500_DATADIR, TOP500_DB, TOP500_WORKERS,
            TOP500_REQUEST_TIMEOUT, TOP500_BATCH_TIMEOUT, TOP500_CONFLICT_POLICY
        """
        datadir = Path(os.environ.get("TOP500_DATADIR", DEFAULT_DATADIR))
        if overrides.get("datadir") is not None:
            datadir = Path(overrides["datadir"])

        values = {
            "datadir": datadir,
            "db_path": Path(os.environ.get("TOP500_DB", datadir / "top500.sqlite3")),
            "workers": int(os.environ.get("TOP500_WORKERS", DETAIL_WORKERS)),
            "request_timeout": float(os.environ.get("TOP500_REQUEST_TIMEOUT", REQUEST_TIMEOUT)),
            "batch_timeout": float(os.environ.get("TOP500_BATCH_TIMEOUT", BATCH_TIMEOUT)),
            "conflict_policy": os.environ.get("TOP500_CONFLICT_POLICY", "update"),
        }
        for key, value in overrides.items():
            if key != "datadir" and value is not None:
                values[key] = value

        return cls(**values)
