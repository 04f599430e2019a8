# tidemark Component Factory
"""
tidemark.api.factory - コンポーネントファクトリー

- 設定から同期に必要なコンポーネントを生成
- 生成済みコンポーネントのキャッシュ
- 依存性注入のサポート
"""

from __future__ import annotations

import logging
from typing import Any

from tidemark.api.base import StoreBackend, TidemarkConfig
from tidemark.errors import ConfigurationError
from tidemark.index.azure_search import AzureSearchIndexStore, AzureSearchStoreConfig
from tidemark.index.base import IndexStore
from tidemark.index.memory import InMemoryIndexStore
from tidemark.index.state import IndexStateStore
from tidemark.mapper.structure import DocumentWithCommentsMapper
from tidemark.observability import Observability
from tidemark.remote.base import RemoteSystemClient
from tidemark.remote.get_json import GetJSONClient
from tidemark.sync.cancellation import CancellationToken
from tidemark.sync.indexer import SpaceIndexer
from tidemark.sync.protocols import IndexingListener

logger = logging.getLogger(__name__)


# ========== Component Factory ==========


class ComponentFactory:
    """コンポーネントファクトリー

    Example:
        >>> factory = ComponentFactory(config)
        >>> indexer = factory.create_space_indexer("DOC", full_update=True)
        >>> info = await indexer.run()
        >>> await factory.close()
    """

    def __init__(self, config: TidemarkConfig, **overrides: Any):
        self.config = config
        self._cached_components: dict[str, Any] = dict(overrides)

    def clear_cache(self) -> None:
        """キャッシュをクリア"""
        self._cached_components.clear()

    def get_remote_client(self) -> RemoteSystemClient:
        """リモートクライアントを取得"""
        if "remote" not in self._cached_components:
            self._cached_components["remote"] = GetJSONClient(self.config.remote)
        return self._cached_components["remote"]

    def get_index_store(self) -> IndexStore:
        """インデックスストアを取得"""
        if "store" not in self._cached_components:
            self._cached_components["store"] = self._create_index_store()
        return self._cached_components["store"]

    def get_state_store(self) -> IndexStateStore:
        """状態ストアを取得"""
        if "state" not in self._cached_components:
            self._cached_components["state"] = IndexStateStore(
                self.get_index_store(),
                index_name=self.config.store.state_index_name,
            )
        return self._cached_components["state"]

    def get_mapper(self) -> DocumentWithCommentsMapper:
        """マッパーを取得"""
        if "mapper" not in self._cached_components:
            self._cached_components["mapper"] = DocumentWithCommentsMapper(
                self.config.index
            )
        return self._cached_components["mapper"]

    def create_space_indexer(
        self,
        space_key: str,
        full_update: bool = False,
        cancellation: CancellationToken | None = None,
        listener: IndexingListener | None = None,
        observability: Observability | None = None,
    ) -> SpaceIndexer:
        """同期パスを作成（パスごとに新しいインスタンス）"""
        return SpaceIndexer(
            space_key,
            full_update=full_update,
            remote_client=self.get_remote_client(),
            index_store=self.get_index_store(),
            state_store=self.get_state_store(),
            mapper=self.get_mapper(),
            cancellation=cancellation,
            listener=listener,
            observability=observability,
            scroll_page_size=self.config.store.scroll_page_size,
        )

    async def close(self) -> None:
        """生成したクライアントをクローズ"""
        remote = self._cached_components.get("remote")
        if remote is not None:
            await remote.close()
        store = self._cached_components.get("store")
        if store is not None:
            await store.close()

    # ========== Internal Creation Methods ==========

    def _create_index_store(self) -> IndexStore:
        store_config = self.config.store
        if store_config.backend == StoreBackend.MEMORY:
            return InMemoryIndexStore()
        if store_config.backend == StoreBackend.LOCAL:
            logger.info(f"Using local index file {store_config.local_path}")
            return InMemoryIndexStore(path=store_config.local_path)
        if store_config.backend == StoreBackend.AZURE:
            return self._create_azure_store(store_config.azure)
        raise ConfigurationError(
            f"Unsupported store backend: {store_config.backend}",
            key="store/backend",
        )

    def _create_azure_store(
        self,
        azure_config: AzureSearchStoreConfig | None,
    ) -> AzureSearchIndexStore:
        azure_config = azure_config or AzureSearchStoreConfig()
        index = self.config.index
        # マッパーが検索条件に使うフィールドを保存対象に含める
        for field_name in (index.field_source, index.field_space_key, index.field_document_id):
            if field_name not in azure_config.filterable_fields:
                azure_config.filterable_fields.append(field_name)
        azure_config.indexed_at_field = index.field_indexed_at
        return AzureSearchIndexStore(config=azure_config)


def build_space_indexer(
    config: TidemarkConfig,
    space_key: str,
    full_update: bool = False,
    **kwargs: Any,
) -> SpaceIndexer:
    """設定から同期パスを作成するヘルパー関数"""
    return ComponentFactory(config).create_space_indexer(
        space_key, full_update=full_update, **kwargs
    )
