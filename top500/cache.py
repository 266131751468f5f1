"""取得済み HTML のファイルキャッシュ.

配置:
  {datadir}/list/{list_id}.{page}.html
  {datadir}/site/{site_id}.html
  {datadir}/item/{item_id}.html

本来のパスにファイルがあれば「取得完了」。転送中の本文は {name}.part に書き、
成功した時点で os.replace で本来のパスへ移す。
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

KINDS = ("list", "site", "item")
PART_SUFFIX = ".part"

# これより古い .part は中断した実行の残骸とみなす（秒）
STALE_PART_AGE = 600


class PendingDocument:
    """予約済みの取得中ドキュメント. commit するまで本来のパスには現れない."""

    def __init__(self, path: Path, part: Path, fp: BinaryIO):
        self.path = path
        self.part = part
        self._fp = fp

    def write(self, data: bytes) -> None:
        self._fp.write(data)

    def commit(self) -> None:
        self._fp.close()
        os.replace(self.part, self.path)

    def abandon(self) -> None:
        self._fp.close()
        self.part.unlink(missing_ok=True)

    def __enter__(self) -> PendingDocument:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.abandon()


class FetchCache:
    """種別（list / site / item）と数値 ID をキーにしたキャッシュ."""

    def __init__(self, datadir: Path | str, stale_part_age: float = STALE_PART_AGE):
        self.datadir = Path(datadir)
        self.stale_part_age = stale_part_age

    def prepare(self) -> None:
        """キャッシュディレクトリを作成する."""
        for kind in KINDS:
            (self.datadir / kind).mkdir(parents=True, exist_ok=True)

    def list_page_path(self, list_id: int, page: int) -> Path:
        return self.datadir / "list" / f"{list_id}.{page}.html"

    def detail_path(self, kind: str, record_id: int) -> Path:
        if kind not in ("site", "item"):
            raise ValueError(f"不明な種別: {kind}")
        return self.datadir / kind / f"{record_id}.html"

    @staticmethod
    def part_path(path: Path) -> Path:
        return path.with_name(path.name + PART_SUFFIX)

    @staticmethod
    def has(path: Path) -> bool:
        """取得済みかどうか. 0 バイトのファイルは未取得とみなす."""
        try:
            return path.stat().st_size > 0
        except FileNotFoundError:
            return False

    def reserve(self, path: Path) -> PendingDocument | None:
        """path の取得担当になる. {name}.part を排他的に作成して返す.

        Returns:
            PendingDocument: この呼び出しが取得担当になった
            None: 取得済み、または他の実行が取得中（キャッシュヒット扱い）
        """
        if self.has(path):
            return None

        path.parent.mkdir(parents=True, exist_ok=True)
        part = self.part_path(path)
        try:
            return PendingDocument(path, part, open(part, "xb"))
        except FileExistsError:
            if not self._is_stale(part):
                return None

        # 中断した実行の .part は捨てて取り直す
        logger.info("古い取得中ファイルを削除: %s", part)
        part.unlink(missing_ok=True)
        try:
            return PendingDocument(path, part, open(part, "xb"))
        except FileExistsError:
            return None

    def _is_stale(self, part: Path) -> bool:
        try:
            age = time.time() - part.stat().st_mtime
        except FileNotFoundError:
            return True
        return age > self.stale_part_age

    @staticmethod
    def store(path: Path, data: bytes) -> None:
        """本文を一時ファイルに書いてから path へ置き換える."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=path.name + ".", suffix=PART_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @staticmethod
    def discard(path: Path) -> None:
        """キャッシュファイルを削除する（存在しなくてもよい）."""
        path.unlink(missing_ok=True)

    @staticmethod
    def read(path: Path) -> str:
        return path.read_text(encoding="utf-8", errors="replace")

    def cached_ids(self, kind: str) -> list[int]:
        """取得済みの site / item ID を昇順で返す."""
        directory = self.datadir / kind
        if not directory.is_dir():
            return []

        ids = []
        for path in directory.glob("*.html"):
            if not path.stem.isdigit() or not self.has(path):
                continue
            ids.append(int(path.stem))
        return sorted(ids)
