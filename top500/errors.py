"""例外定義.

伝播ポリシー:
  - NumericConversionError / CacheConflictError はその場でログ出力して吸収
  - それ以外は呼び出し元へ伝播し、ページ・詳細レコード・リスト単位で失敗させる
"""

from __future__ import annotations


class Top500Error(Exception):
    """本パッケージの例外の基底クラス."""


class StructuralParseError(Top500Error):
    """想定した HTML 要素が存在しない（ページ構造の変更・文書の途切れ）."""


class SchemaDriftError(Top500Error):
    """属性ディスパッチ表に存在しないラベルを検出した."""

    def __init__(self, label: str, item_id: int | None = None):
        self.label = label
        self.item_id = item_id
        super().__init__(f"未知の属性ラベル: {label!r} (item={item_id})")


class NumericConversionError(Top500Error):
    """数値属性の変換に失敗した（属性単位で回復可能）."""

    def __init__(self, text: str):
        self.text = text
        super().__init__(f"数値に変換できません: {text!r}")


class TransferError(Top500Error):
    """HTTP ステータス異常または通信失敗."""

    def __init__(self, message: str, url: str | None = None, status: int | None = None):
        self.url = url
        self.status = status
        super().__init__(message)


class CacheMissError(TransferError):
    """no-fetch モードで必要な文書がキャッシュに存在しない."""


class CacheConflictError(Top500Error):
    """キャッシュファイルを他の実行が先に作成した（キャッシュヒット扱い）."""


class PersistenceError(Top500Error):
    """制約違反または I/O 失敗によりトランザクションを中止した."""
