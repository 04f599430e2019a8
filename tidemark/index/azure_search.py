# Azure AI Search Index Store
"""
Azure AI Search を使ったインデックスストア（本番用）。

レコードは以下のフィールドで保存する:
    - key: レコード種別とIDから生成したキー
    - record_type / doc_id / parent_id: レコードの識別情報
    - filterable_fields: 完全一致フィルタに使うフィールド
    - indexed_at: 書き込み日時（古いレコードの検索に使用）
    - payload: ドキュメント全体の JSON

Azure AI Search はニアリアルタイムのため、refresh は一定時間の待機で代替する。

References:
- https://learn.microsoft.com/en-us/azure/search/search-how-to-load-search-index
- https://learn.microsoft.com/en-us/azure/search/search-query-odata-filter
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any

from tidemark.errors import ConfigurationError, IndexStoreError
from tidemark.index.base import (
    BulkAction,
    BulkRequest,
    IndexOperation,
    IndexStore,
    ScrollHandle,
    ScrollSearchRequest,
    SearchHit,
)
from tidemark.utils.datetime_utils import format_iso_datetime, parse_iso_datetime

logger = logging.getLogger(__name__)

_SYSTEM_FIELDS = ("key", "record_type", "doc_id", "parent_id", "indexed_at", "payload")


@dataclass
class AzureSearchStoreConfig:
    """Azure AI Search 設定

    Attributes:
        endpoint: Azure AI Search エンドポイント
        api_key: APIキー（Managed Identity使用時は不要）
        use_managed_identity: Managed Identity を使用するか
        filterable_fields: 完全一致フィルタ用に保存するフィールド
        indexed_at_field: 書き込み日時を持つドキュメントフィールド
        create_indexes: 存在しないインデックスを作成するか
        batch_size: 1リクエストあたりの最大アクション数
        refresh_wait_seconds: refresh 時の待機時間（秒）
        max_retries: 最大リトライ回数
        retry_delay: 初期リトライ遅延（秒）
    """
    endpoint: str | None = None
    api_key: str | None = None
    use_managed_identity: bool = False

    filterable_fields: list[str] = field(
        default_factory=lambda: ["source", "space_key", "document_id"]
    )
    indexed_at_field: str = "indexed_at"
    create_indexes: bool = True

    batch_size: int = 1000
    refresh_wait_seconds: float = 1.0

    max_retries: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        """環境変数からの取得"""
        if self.endpoint is None:
            self.endpoint = os.environ.get("AZURE_SEARCH_ENDPOINT")
        if self.api_key is None and not self.use_managed_identity:
            self.api_key = os.environ.get("AZURE_SEARCH_KEY")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AzureSearchStoreConfig":
        data = data or {}
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def make_key(record_type: str, doc_id: str) -> str:
    """Azure のキーに使える文字だけでレコードキーを生成"""
    raw = f"{record_type}:{doc_id}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def _odata_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _to_batch(actions: list[dict[str, Any]]):
    """アクション辞書を IndexDocumentsBatch に変換"""
    from azure.search.documents import IndexDocumentsBatch

    batch = IndexDocumentsBatch()
    for action in actions:
        document = {k: v for k, v in action.items() if k != "@search.action"}
        if action["@search.action"] == "delete":
            batch.add_delete_actions([document])
        else:
            batch.add_merge_or_upload_actions([document])
    return batch


class AzureSearchIndexStore(IndexStore):
    """Azure AI Search インデックスストア

    Example:
        >>> # API Key 認証
        >>> store = AzureSearchIndexStore(
        ...     endpoint="https://xxx.search.windows.net",
        ...     api_key="your-api-key",
        ... )

        >>> # Managed Identity 認証（推奨）
        >>> store = AzureSearchIndexStore(
        ...     endpoint="https://xxx.search.windows.net",
        ...     use_managed_identity=True,
        ... )

    Environment Variables:
        AZURE_SEARCH_ENDPOINT: Azure AI Search エンドポイント
        AZURE_SEARCH_KEY: API キー（Managed Identity使用時は不要）
    """

    def __init__(
        self,
        endpoint: str | None = None,
        api_key: str | None = None,
        use_managed_identity: bool = False,
        config: AzureSearchStoreConfig | None = None,
        **kwargs: Any,
    ) -> None:
        if config is not None:
            self.config = config
        else:
            config_kwargs = {
                k: v for k, v in kwargs.items()
                if k in AzureSearchStoreConfig.__dataclass_fields__
            }
            self.config = AzureSearchStoreConfig(
                endpoint=endpoint,
                api_key=api_key,
                use_managed_identity=use_managed_identity,
                **config_kwargs,
            )

        if not self.config.endpoint:
            raise ConfigurationError(
                "Azure AI Search endpoint is not configured (AZURE_SEARCH_ENDPOINT)",
                key="store/azure/endpoint",
            )
        if not self.config.api_key and not self.config.use_managed_identity:
            raise ConfigurationError(
                "Either an API key or managed identity must be configured "
                "for Azure AI Search",
                key="store/azure/api_key",
            )

        self._credential = self._create_credential()
        self._search_clients: dict[str, Any] = {}
        self._index_client = None
        self._known_indexes: set[str] = set()

    def _create_credential(self):
        """クレデンシャルを作成"""
        if self.config.use_managed_identity:
            from azure.identity import DefaultAzureCredential
            return DefaultAzureCredential()
        from azure.core.credentials import AzureKeyCredential
        return AzureKeyCredential(self.config.api_key)

    def search_client(self, index_name: str):
        """SearchClient を取得（遅延初期化）"""
        client = self._search_clients.get(index_name)
        if client is None:
            from azure.search.documents import SearchClient
            client = SearchClient(
                endpoint=self.config.endpoint,
                index_name=index_name,
                credential=self._credential,
            )
            self._search_clients[index_name] = client
        return client

    @property
    def index_client(self):
        """SearchIndexClient を取得（遅延初期化）"""
        if self._index_client is None:
            from azure.search.documents.indexes import SearchIndexClient
            self._index_client = SearchIndexClient(
                endpoint=self.config.endpoint,
                credential=self._credential,
            )
        return self._index_client

    def _retry_operation(self, operation, *args, **kwargs):
        """リトライ付きで操作を実行

        一時的な HTTP エラーのみ指数バックオフでリトライ。
        """
        from azure.core.exceptions import (
            HttpResponseError,
            ResourceNotFoundError,
            ServiceRequestError,
        )

        last_error: Exception | None = None
        for attempt in range(self.config.max_retries):
            try:
                return operation(*args, **kwargs)
            except ResourceNotFoundError:
                raise
            except (HttpResponseError, ServiceRequestError) as e:
                status = getattr(e, "status_code", None)
                if status is not None and 400 <= status < 500 and status != 429:
                    raise IndexStoreError(
                        f"Azure AI Search rejected the request: {e}",
                        cause=e,
                        component="index.azure_search",
                    ) from e
                last_error = e
                if attempt < self.config.max_retries - 1:
                    delay = self.config.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Operation failed (attempt {attempt + 1}/{self.config.max_retries}): {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    time.sleep(delay)

        logger.error(f"Operation failed after {self.config.max_retries} attempts: {last_error}")
        raise IndexStoreError(
            f"Azure AI Search operation failed after {self.config.max_retries} "
            f"attempts: {last_error}",
            cause=last_error,
            component="index.azure_search",
        )

    # ------------------------------------------------------------------
    # Index management
    # ------------------------------------------------------------------

    def create_index_if_not_exists(self, index_name: str) -> bool:
        """インデックスを作成（存在しない場合）

        Returns:
            True: 新規作成、False: 既存
        """
        if index_name in self._known_indexes:
            return False

        from azure.core.exceptions import ResourceNotFoundError
        from azure.search.documents.indexes.models import (
            SearchFieldDataType,
            SearchIndex,
            SimpleField,
        )

        try:
            self._retry_operation(self.index_client.get_index, index_name)
            self._known_indexes.add(index_name)
            logger.debug(f"Index '{index_name}' already exists")
            return False
        except ResourceNotFoundError:
            pass

        logger.info(f"Creating index '{index_name}'...")
        fields = [
            SimpleField(
                name="key",
                type=SearchFieldDataType.String,
                key=True,
                filterable=True,
                sortable=True,
            ),
            SimpleField(name="record_type", type=SearchFieldDataType.String, filterable=True),
            SimpleField(name="doc_id", type=SearchFieldDataType.String, filterable=True),
            SimpleField(name="parent_id", type=SearchFieldDataType.String, filterable=True),
            SimpleField(
                name="indexed_at",
                type=SearchFieldDataType.DateTimeOffset,
                filterable=True,
                sortable=True,
            ),
            SimpleField(name="payload", type=SearchFieldDataType.String),
        ]
        for field_name in self.config.filterable_fields:
            if field_name not in _SYSTEM_FIELDS:
                fields.append(SimpleField(
                    name=field_name,
                    type=SearchFieldDataType.String,
                    filterable=True,
                ))

        index = SearchIndex(name=index_name, fields=fields)
        self._retry_operation(self.index_client.create_or_update_index, index)
        self._known_indexes.add(index_name)
        logger.info(f"Index '{index_name}' created successfully")
        return True

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def _to_action(self, op: IndexOperation) -> dict[str, Any]:
        key = make_key(op.record_type, op.doc_id)
        if op.action == BulkAction.DELETE:
            return {"@search.action": "delete", "key": key}

        document = op.document or {}
        indexed_at = document.get(self.config.indexed_at_field)
        if isinstance(indexed_at, str):
            indexed_at = parse_iso_datetime(indexed_at)
        action: dict[str, Any] = {
            "@search.action": "mergeOrUpload",
            "key": key,
            "record_type": op.record_type,
            "doc_id": op.doc_id,
            "parent_id": op.parent_id,
            "indexed_at": format_iso_datetime(indexed_at) if indexed_at else None,
            "payload": json.dumps(document, ensure_ascii=False, default=str),
        }
        for field_name in self.config.filterable_fields:
            if field_name not in _SYSTEM_FIELDS:
                value = document.get(field_name)
                action[field_name] = None if value is None else str(value)
        return action

    def _execute_bulk_sync(self, bulk: BulkRequest) -> None:
        by_index: dict[str, dict[str, dict[str, Any]]] = {}
        for op in bulk.operations:
            actions = by_index.setdefault(op.index_name, {})
            action = self._to_action(op)
            # 同一キーへの操作は最後のものだけを送信
            actions.pop(action["key"], None)
            actions[action["key"]] = action

        for index_name, actions in by_index.items():
            if self.config.create_indexes:
                self.create_index_if_not_exists(index_name)
            client = self.search_client(index_name)
            action_list = list(actions.values())
            failed: list[str] = []
            for i in range(0, len(action_list), self.config.batch_size):
                chunk = action_list[i:i + self.config.batch_size]
                results = self._retry_operation(client.index_documents, _to_batch(chunk))
                failed.extend(
                    f"{r.key}: {r.error_message}"
                    for r in results or []
                    if not r.succeeded
                )
            if failed:
                raise IndexStoreError(
                    f"{len(failed)} of {len(action_list)} bulk actions failed "
                    f"in index {index_name}",
                    index_name=index_name,
                    failed_keys=failed,
                    component="index.azure_search",
                    operation="execute_bulk",
                )
            logger.debug(f"Indexed {len(action_list)} actions into {index_name}")

    async def execute_bulk(self, bulk: BulkRequest) -> None:
        if len(bulk) == 0:
            return
        await asyncio.to_thread(self._execute_bulk_sync, bulk)

    async def refresh(self, index_name: str) -> None:
        # 書き込みが検索に反映されるまで待機
        await asyncio.sleep(self.config.refresh_wait_seconds)

    # ------------------------------------------------------------------
    # Scroll
    # ------------------------------------------------------------------

    def build_filter(self, request: ScrollSearchRequest) -> str:
        """スクロール条件を OData フィルタに変換

        Raises:
            ConfigurationError: フィルタ対象のフィールドが保存されていない場合
        """
        clauses: list[str] = []
        if request.record_types:
            clauses.append(
                f"search.in(record_type, {_odata_literal(','.join(request.record_types))}, ',')"
            )
        for field_name, value in request.term_filters.items():
            if field_name not in self.config.filterable_fields:
                raise ConfigurationError(
                    f"Field '{field_name}' is not stored as filterable in Azure AI Search, "
                    f"add it to 'store/azure/filterable_fields'",
                    key="store/azure/filterable_fields",
                )
            clauses.append(f"{field_name} eq {_odata_literal(str(value))}")
        if request.indexed_before is not None:
            clauses.append(f"indexed_at lt {format_iso_datetime(request.indexed_before)}")
        return " and ".join(clauses)

    def _search_page(
        self,
        request: ScrollSearchRequest,
        after_key: str | None,
        include_total: bool = False,
    ) -> tuple[list[dict[str, Any]], int | None]:
        filter_expr = self.build_filter(request)
        if after_key is not None:
            key_clause = f"key gt {_odata_literal(after_key)}"
            filter_expr = f"{filter_expr} and {key_clause}" if filter_expr else key_clause
        results = self._retry_operation(
            self.search_client(request.index_name).search,
            search_text="*",
            filter=filter_expr or None,
            select=["key", "record_type", "doc_id", "parent_id", "payload"],
            order_by=["key asc"],
            top=request.page_size,
            include_total_count=include_total,
        )
        rows = [dict(r) for r in results]
        total = results.get_count() if include_total else None
        return rows, total

    async def open_scroll(self, request: ScrollSearchRequest) -> ScrollHandle:
        # キー順のキーセットページングで、削除によるずれを防ぐ
        rows, total = await asyncio.to_thread(self._search_page, request, None, True)
        return ScrollHandle(
            scroll_id=make_key("scroll", request.index_name),
            request=request,
            total_hits=total or 0,
            state={"buffer": rows, "last_key": None, "exhausted": False},
        )

    async def continue_scroll(self, handle: ScrollHandle) -> list[SearchHit]:
        state = handle.state
        if state["buffer"]:
            rows = state["buffer"]
            state["buffer"] = []
        elif state["exhausted"] or state["last_key"] is None:
            return []
        else:
            rows, _ = await asyncio.to_thread(
                self._search_page, handle.request, state["last_key"]
            )

        if not rows:
            state["exhausted"] = True
            return []
        state["last_key"] = rows[-1]["key"]
        if len(rows) < handle.request.page_size:
            state["exhausted"] = True

        return [
            SearchHit(
                index_name=handle.request.index_name,
                record_type=row["record_type"],
                doc_id=row["doc_id"],
                source=json.loads(row["payload"]) if row.get("payload") else {},
                parent_id=row.get("parent_id"),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _get_document_sync(
        self,
        index_name: str,
        record_type: str,
        doc_id: str,
    ) -> dict[str, Any] | None:
        from azure.core.exceptions import ResourceNotFoundError

        try:
            result = self._retry_operation(
                self.search_client(index_name).get_document,
                key=make_key(record_type, doc_id),
                selected_fields=["payload"],
            )
        except ResourceNotFoundError:
            return None
        payload = dict(result).get("payload")
        return json.loads(payload) if payload else {}

    async def get_document(
        self,
        index_name: str,
        record_type: str,
        doc_id: str,
    ) -> dict[str, Any] | None:
        return await asyncio.to_thread(
            self._get_document_sync, index_name, record_type, doc_id
        )

    async def close(self) -> None:
        for client in self._search_clients.values():
            client.close()
        self._search_clients.clear()
        if self._index_client is not None:
            self._index_client.close()
            self._index_client = None


def create_azure_search_store(
    endpoint: str | None = None,
    api_key: str | None = None,
    use_managed_identity: bool = False,
    **kwargs: Any,
) -> AzureSearchIndexStore:
    """AzureSearchIndexStore を作成するファクトリ関数

    Args:
        endpoint: Azure AI Search エンドポイント
        api_key: APIキー
        use_managed_identity: Managed Identity を使用
        **kwargs: AzureSearchStoreConfig の追加設定

    Returns:
        AzureSearchIndexStore インスタンス
    """
    return AzureSearchIndexStore(
        endpoint=endpoint,
        api_key=api_key,
        use_managed_identity=use_managed_identity,
        **kwargs,
    )
