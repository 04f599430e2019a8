# Sync Collaborator Protocols
"""
同期エンジンが依存するコンポーネントのインターフェース。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from tidemark.index.base import BulkRequest, ScrollSearchRequest, SearchHit
from tidemark.sync.types import ChangedDocumentsPage, IndexingInfoSnapshot


@runtime_checkable
class RemoteSystemClientProtocol(Protocol):
    """リモートソースクライアントプロトコル"""

    async def get_changed_documents(
        self,
        space_key: str,
        start_at: int,
        updated_after: datetime | None,
    ) -> ChangedDocumentsPage:
        """``updated_after`` 以降に更新されたドキュメントを取得

        Args:
            space_key: 対象スペース
            start_at: ページの開始位置
            updated_after: 下限日時（None の場合は全件）

        Returns:
            更新日時の昇順に並んだページ

        Raises:
            SourceCommunicationError: 通信に失敗した場合
        """
        ...


@runtime_checkable
class DocumentMapperProtocol(Protocol):
    """ドキュメントマッパープロトコル

    生ドキュメントからの値抽出と、インデックス書き込みの組み立てを担う。
    """

    def extract_document_id(self, document: dict[str, Any]) -> str | None:
        ...

    def extract_document_updated(self, document: dict[str, Any]) -> datetime | None:
        ...

    def extract_document_deleted(self, document: dict[str, Any] | None) -> bool:
        ...

    def index_document(
        self,
        bulk: BulkRequest,
        space_key: str,
        document: dict[str, Any],
    ) -> None:
        """ドキュメントとコメントの書き込みをバルクに追加"""
        ...

    def get_document_search_index_name(self, space_key: str) -> str:
        ...

    def build_search_for_indexed_documents_not_updated_after(
        self,
        request: ScrollSearchRequest,
        space_key: str,
        boundary: datetime,
    ) -> None:
        """``boundary`` より前に書き込まれたレコードの検索条件を設定"""
        ...

    def delete_hit(self, bulk: BulkRequest, hit: SearchHit) -> bool:
        """ヒットの削除をバルクに追加

        Returns:
            ドキュメントなら True、コメントなら False
        """
        ...


@runtime_checkable
class StateStoreProtocol(Protocol):
    """ウォーターマーク保存先プロトコル"""

    async def read_watermark(self, space_key: str) -> datetime | None:
        ...

    async def store_watermark(
        self,
        space_key: str,
        value: datetime,
        bulk: BulkRequest | None = None,
    ) -> None:
        ...


@runtime_checkable
class IndexingListener(Protocol):
    """パス終了通知を受け取るリスナー"""

    def on_indexing_finished(self, info: IndexingInfoSnapshot) -> None:
        ...
