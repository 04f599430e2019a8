# In-Memory Index Store
"""
辞書ベースのインデックスストア。

テストとローカル実行用。``path`` を指定するとバルク実行ごとに
JSON ファイルへ保存し、次回起動時に読み込む。
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from tidemark.errors import IndexStoreError
from tidemark.index.base import (
    BulkAction,
    BulkRequest,
    IndexStore,
    ScrollHandle,
    ScrollSearchRequest,
    SearchHit,
)
from tidemark.utils.datetime_utils import parse_iso_datetime

logger = logging.getLogger(__name__)

# (record_type, doc_id) -> {"source": ..., "parent_id": ...}
_Records = dict[tuple[str, str], dict[str, Any]]


class InMemoryIndexStore(IndexStore):
    """インメモリインデックスストア

    Attributes:
        near_real_time: True の場合、検索は直前の refresh 時点の内容のみを参照する
        bulk_history: 実行されたバルクの操作数（テスト用）
        refreshed: refresh されたインデックス名（テスト用）

    Example:
        >>> store = InMemoryIndexStore(path="./output/index.json")
        >>> bulk = BulkRequest()
        >>> bulk.upsert("docs", "document", "D-1", {"title": "hello"})
        >>> await store.execute_bulk(bulk)
    """

    def __init__(
        self,
        path: str | Path | None = None,
        near_real_time: bool = False,
    ) -> None:
        self.path = Path(path) if path else None
        self.near_real_time = near_real_time

        self._indices: dict[str, _Records] = {}
        self._visible: dict[str, _Records] = {}
        self._scrolls: dict[str, list[SearchHit]] = {}
        self.bulk_history: list[int] = []
        self.refreshed: list[str] = []
        self.closed_scrolls: list[str] = []

        if self.path is not None and self.path.exists():
            self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        """JSON ファイルから読み込み"""
        assert self.path is not None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise IndexStoreError(
                f"Failed to load index file {self.path}: {e}",
                cause=e,
                component="index.memory",
                operation="load",
            ) from e

        for index_name, records in data.get("indices", {}).items():
            self._indices[index_name] = {
                (r["record_type"], r["doc_id"]): {
                    "source": r["source"],
                    "parent_id": r.get("parent_id"),
                }
                for r in records
            }
        self._visible = {name: dict(recs) for name, recs in self._indices.items()}
        logger.info(f"Loaded index file {self.path}: {len(self._indices)} indices")

    def _save(self) -> None:
        """JSON ファイルに保存"""
        assert self.path is not None
        data = {
            "indices": {
                index_name: [
                    {
                        "record_type": record_type,
                        "doc_id": doc_id,
                        "parent_id": rec["parent_id"],
                        "source": rec["source"],
                    }
                    for (record_type, doc_id), rec in records.items()
                ]
                for index_name, records in self._indices.items()
            }
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        except OSError as e:
            raise IndexStoreError(
                f"Failed to save index file {self.path}: {e}",
                cause=e,
                component="index.memory",
                operation="save",
            ) from e

    # ------------------------------------------------------------------
    # IndexStore
    # ------------------------------------------------------------------

    async def execute_bulk(self, bulk: BulkRequest) -> None:
        for op in bulk.operations:
            records = self._indices.setdefault(op.index_name, {})
            key = (op.record_type, op.doc_id)
            if op.action == BulkAction.UPSERT:
                records[key] = {
                    "source": dict(op.document or {}),
                    "parent_id": op.parent_id,
                }
            else:
                records.pop(key, None)

        self.bulk_history.append(len(bulk))
        if not self.near_real_time:
            self._publish()
        if self.path is not None:
            self._save()

        logger.debug(f"Executed bulk with {len(bulk)} operations")

    def _publish(self) -> None:
        self._visible = {name: dict(recs) for name, recs in self._indices.items()}

    async def refresh(self, index_name: str) -> None:
        self.refreshed.append(index_name)
        self._publish()

    async def open_scroll(self, request: ScrollSearchRequest) -> ScrollHandle:
        hits = [
            SearchHit(
                index_name=request.index_name,
                record_type=record_type,
                doc_id=doc_id,
                source=dict(rec["source"]),
                parent_id=rec["parent_id"],
            )
            for (record_type, doc_id), rec in self._visible.get(
                request.index_name, {}
            ).items()
            if self._matches(request, record_type, rec["source"])
        ]
        scroll_id = uuid.uuid4().hex
        self._scrolls[scroll_id] = hits
        return ScrollHandle(scroll_id=scroll_id, request=request, total_hits=len(hits))

    async def continue_scroll(self, handle: ScrollHandle) -> list[SearchHit]:
        remaining = self._scrolls.get(handle.scroll_id)
        if remaining is None:
            raise IndexStoreError(
                f"Unknown scroll id {handle.scroll_id}",
                component="index.memory",
                operation="continue_scroll",
            )
        page = remaining[: handle.request.page_size]
        del remaining[: handle.request.page_size]
        return page

    async def close_scroll(self, handle: ScrollHandle) -> None:
        self._scrolls.pop(handle.scroll_id, None)
        self.closed_scrolls.append(handle.scroll_id)

    async def get_document(
        self,
        index_name: str,
        record_type: str,
        doc_id: str,
    ) -> dict[str, Any] | None:
        rec = self._indices.get(index_name, {}).get((record_type, doc_id))
        return dict(rec["source"]) if rec else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _matches(
        request: ScrollSearchRequest,
        record_type: str,
        source: dict[str, Any],
    ) -> bool:
        if request.record_types and record_type not in request.record_types:
            return False
        for field_name, value in request.term_filters.items():
            if source.get(field_name) != value:
                return False
        if request.indexed_before is not None:
            indexed_at = source.get(request.indexed_at_field)
            if isinstance(indexed_at, str):
                indexed_at = parse_iso_datetime(indexed_at)
            if not isinstance(indexed_at, datetime):
                return False
            if indexed_at >= request.indexed_before:
                return False
        return True

    def count(self, index_name: str, record_type: str | None = None) -> int:
        """レコード数を取得"""
        records = self._indices.get(index_name, {})
        if record_type is None:
            return len(records)
        return sum(1 for rt, _ in records if rt == record_type)

    def ids(self, index_name: str, record_type: str) -> set[str]:
        """指定種別のID一覧を取得"""
        return {
            doc_id
            for rt, doc_id in self._indices.get(index_name, {})
            if rt == record_type
        }
