# Index Store Base
"""
Base classes and protocols for search index stores.

インデックスへの書き込みはすべて BulkRequest に蓄積され、
execute_bulk で一括送信される。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class BulkAction(str, Enum):
    """バルク操作の種類"""

    UPSERT = "upsert"
    DELETE = "delete"


@dataclass
class IndexOperation:
    """バルク内の単一操作

    Attributes:
        action: 操作種別
        index_name: 対象インデックス名
        record_type: レコード種別（ドキュメント、コメント、状態など）
        doc_id: インデックス内のID
        document: 書き込むドキュメント（DELETE時は None）
        parent_id: 親ドキュメントID（子レコードの場合）
    """

    action: BulkAction
    index_name: str
    record_type: str
    doc_id: str
    document: dict[str, Any] | None = None
    parent_id: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        """インデックス内でレコードを一意に識別するキー"""
        return (self.index_name, self.record_type, self.doc_id)


@dataclass
class BulkRequest:
    """バルクリクエスト

    1ページ分の書き込みとウォーターマークを一度に送信するための入れ物。
    """

    operations: list[IndexOperation] = field(default_factory=list)

    def upsert(
        self,
        index_name: str,
        record_type: str,
        doc_id: str,
        document: dict[str, Any],
        parent_id: str | None = None,
    ) -> None:
        """追加または更新を登録"""
        self.operations.append(
            IndexOperation(
                action=BulkAction.UPSERT,
                index_name=index_name,
                record_type=record_type,
                doc_id=doc_id,
                document=document,
                parent_id=parent_id,
            )
        )

    def delete(
        self,
        index_name: str,
        record_type: str,
        doc_id: str,
        parent_id: str | None = None,
    ) -> None:
        """削除を登録"""
        self.operations.append(
            IndexOperation(
                action=BulkAction.DELETE,
                index_name=index_name,
                record_type=record_type,
                doc_id=doc_id,
                parent_id=parent_id,
            )
        )

    def number_of_actions(self) -> int:
        return len(self.operations)

    def __len__(self) -> int:
        return len(self.operations)


@dataclass
class SearchHit:
    """スクロール検索のヒット

    Attributes:
        index_name: インデックス名
        record_type: レコード種別
        doc_id: インデックス内のID
        source: 保存されているドキュメント
        parent_id: 親ドキュメントID
    """

    index_name: str
    record_type: str
    doc_id: str
    source: dict[str, Any] = field(default_factory=dict)
    parent_id: str | None = None


@dataclass
class ScrollSearchRequest:
    """スクロール検索リクエスト

    ``indexed_before`` より前に書き込まれたレコードを対象にする。

    Attributes:
        index_name: インデックス名
        record_types: 対象レコード種別
        term_filters: 完全一致フィルタ（フィールド名 -> 値）
        indexed_at_field: 書き込み日時フィールド名
        indexed_before: この日時より前に書き込まれたものが対象
        page_size: 1ページあたりの件数
    """

    index_name: str
    record_types: list[str] = field(default_factory=list)
    term_filters: dict[str, str] = field(default_factory=dict)
    indexed_at_field: str = "indexed_at"
    indexed_before: datetime | None = None
    page_size: int = 100


@dataclass
class ScrollHandle:
    """スクロールの継続に使うハンドル"""

    scroll_id: str
    request: ScrollSearchRequest
    total_hits: int = 0
    state: Any = None


class IndexStore(ABC):
    """インデックスストア抽象基底クラス

    すべてのインデックスストアの基底クラス。
    I/O はすべて非同期。
    """

    @abstractmethod
    async def execute_bulk(self, bulk: BulkRequest) -> None:
        """バルクリクエストを実行

        Raises:
            IndexStoreError: 一部または全部の操作が失敗した場合
        """
        ...

    @abstractmethod
    async def refresh(self, index_name: str) -> None:
        """直前の書き込みを検索に反映"""
        ...

    @abstractmethod
    async def open_scroll(self, request: ScrollSearchRequest) -> ScrollHandle:
        """スクロール検索を開始"""
        ...

    @abstractmethod
    async def continue_scroll(self, handle: ScrollHandle) -> list[SearchHit]:
        """次のページを取得（空リストで終了）"""
        ...

    async def close_scroll(self, handle: ScrollHandle) -> None:
        """スクロールを解放"""
        return None

    @abstractmethod
    async def get_document(
        self,
        index_name: str,
        record_type: str,
        doc_id: str,
    ) -> dict[str, Any] | None:
        """単一ドキュメントを取得（存在しない場合は None）"""
        ...

    async def close(self) -> None:
        """リソースを解放"""
        return None
