"""Stale Document Reaper.

フル同期の後、今回のパスで書き込まれなかったレコードを削除する。
"""

from __future__ import annotations

import logging
from datetime import datetime

from tidemark.errors import ConfigurationError, SyncCancelledError
from tidemark.index.base import BulkRequest, IndexStore, ScrollSearchRequest
from tidemark.sync.cancellation import CancellationToken
from tidemark.sync.protocols import DocumentMapperProtocol
from tidemark.sync.types import SpaceIndexingInfo

logger = logging.getLogger(__name__)


class StaleDocumentReaper:
    """古いレコードの削除処理

    パス開始時刻より前に書き込まれたドキュメントとコメントは、
    フル同期でリモートから返されなかったものとして削除する。
    削除はスクロールを最後まで読み終えた後に一度のバルクで実行する。

    Example:
        >>> reaper = StaleDocumentReaper(index_store, mapper, cancellation)
        >>> await reaper.reap(info, boundary=pass_start)
    """

    def __init__(
        self,
        index_store: IndexStore,
        mapper: DocumentMapperProtocol,
        cancellation: CancellationToken | None = None,
        page_size: int = 100,
    ) -> None:
        self.index_store = index_store
        self.mapper = mapper
        self.cancellation = cancellation or CancellationToken()
        self.page_size = page_size

    def _check_cancelled(self) -> None:
        if self.cancellation.is_cancelled:
            raise SyncCancelledError("Interrupted because sync was cancelled")

    async def reap(self, info: SpaceIndexingInfo, boundary: datetime | None) -> None:
        """古いレコードを削除し、削除件数を ``info`` に記録

        Args:
            info: 結果レコード
            boundary: この日時より前に書き込まれたものが削除対象

        Raises:
            ConfigurationError: boundary が None の場合
            SyncCancelledError: キャンセルされた場合
        """
        if boundary is None:
            raise ConfigurationError(
                "boundary date must be provided for stale document removal",
                component="sync.reaper",
            )

        space_key = info.space_key
        index_name = self.mapper.get_document_search_index_name(space_key)

        self._check_cancelled()
        await self.index_store.refresh(index_name)

        request = ScrollSearchRequest(index_name=index_name, page_size=self.page_size)
        self.mapper.build_search_for_indexed_documents_not_updated_after(
            request, space_key, boundary
        )

        self._check_cancelled()
        handle = await self.index_store.open_scroll(request)
        bulk = BulkRequest()
        try:
            logger.debug(
                f"Found {handle.total_hits} stale records in index {index_name} "
                f"for space {space_key}"
            )
            while True:
                self._check_cancelled()
                hits = await self.index_store.continue_scroll(handle)
                if not hits:
                    break
                for hit in hits:
                    if self.mapper.delete_hit(bulk, hit):
                        info.increment_documents_deleted()
                    else:
                        info.increment_comments_deleted()
        finally:
            await self.index_store.close_scroll(handle)

        if len(bulk) > 0:
            await self.index_store.execute_bulk(bulk)
            logger.info(
                f"Removed {info.documents_deleted} documents and "
                f"{info.comments_deleted} comments from space {space_key}"
            )
