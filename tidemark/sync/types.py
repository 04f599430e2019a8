"""Sync Types.

同期パスで使用する型定義。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tidemark.utils.datetime_utils import format_iso_datetime


@dataclass
class ChangedDocumentsPage:
    """リモートから取得した変更ドキュメントの1ページ

    Attributes:
        documents: 更新日時の昇順に並んだ生ドキュメント
        start_at: このページの先頭位置
        total: 条件に一致する総件数（不明な場合は None）
    """
    documents: list[dict[str, Any]] = field(default_factory=list)
    start_at: int = 0
    total: int | None = None

    @property
    def documents_count(self) -> int:
        """ページ内のドキュメント数"""
        return len(self.documents)


@dataclass(frozen=True)
class IndexingInfoSnapshot:
    """同期パス結果の読み取り専用スナップショット

    リスナーや外部の監視処理にはこの型のみを渡す。
    """
    space_key: str
    full_update: bool
    start_date: datetime
    documents_updated: int = 0
    documents_deleted: int = 0
    comments_deleted: int = 0
    time_elapsed: float = 0.0
    finished_ok: bool | None = None
    error_message: str | None = None

    @property
    def is_running(self) -> bool:
        """パスが実行中か"""
        return self.finished_ok is None

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "space_key": self.space_key,
            "full_update": self.full_update,
            "start_date": format_iso_datetime(self.start_date),
            "documents_updated": self.documents_updated,
            "documents_deleted": self.documents_deleted,
            "comments_deleted": self.comments_deleted,
            "time_elapsed": round(self.time_elapsed, 3),
            "finished_ok": self.finished_ok,
            "error_message": self.error_message,
        }


@dataclass
class SpaceIndexingInfo:
    """同期パスの結果レコード

    カウンタは増加のみ。``finish`` は一度だけ呼び出せる。

    Attributes:
        space_key: 対象スペース
        full_update: フル同期かどうか（ウォーターマーク未保存の場合に途中で True になる）
        start_date: パス開始時刻
        documents_updated: 書き込んだドキュメント数
        documents_deleted: 削除したドキュメント数
        comments_deleted: 削除したコメント数
        time_elapsed: 経過時間（秒）
        finished_ok: 成功時 True、失敗時 False、実行中は None
        error_message: 失敗時のメッセージ
    """
    space_key: str
    full_update: bool
    start_date: datetime
    documents_updated: int = 0
    documents_deleted: int = 0
    comments_deleted: int = 0
    time_elapsed: float = 0.0
    finished_ok: bool | None = None
    error_message: str | None = None

    def increment_documents_updated(self, count: int = 1) -> None:
        self._check_running()
        self.documents_updated += count

    def increment_documents_deleted(self, count: int = 1) -> None:
        self._check_running()
        self.documents_deleted += count

    def increment_comments_deleted(self, count: int = 1) -> None:
        self._check_running()
        self.comments_deleted += count

    def force_full_update(self) -> None:
        """ウォーターマークが無い場合にフル同期へ切り替え"""
        self._check_running()
        self.full_update = True

    def finish(
        self,
        ok: bool,
        time_elapsed: float,
        error_message: str | None = None,
    ) -> None:
        """パスの終了を記録

        Raises:
            RuntimeError: 既に終了している場合
        """
        self._check_running()
        self.finished_ok = ok
        self.time_elapsed = time_elapsed
        self.error_message = None if ok else error_message

    def _check_running(self) -> None:
        if self.finished_ok is not None:
            raise RuntimeError(
                f"Indexing info for space {self.space_key} is already finished"
            )

    def snapshot(self) -> IndexingInfoSnapshot:
        """現在の状態のスナップショットを作成"""
        return IndexingInfoSnapshot(
            space_key=self.space_key,
            full_update=self.full_update,
            start_date=self.start_date,
            documents_updated=self.documents_updated,
            documents_deleted=self.documents_deleted,
            comments_deleted=self.comments_deleted,
            time_elapsed=self.time_elapsed,
            finished_ok=self.finished_ok,
            error_message=self.error_message,
        )
