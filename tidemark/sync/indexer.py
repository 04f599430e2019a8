"""Space Indexer.

1つのスペースについて、リモートソースから変更ドキュメントを取得して
インデックスに反映する同期パスを実行する。

パスの流れ:
    1. ウォーターマークを読み込み（無ければフル同期に切り替え）
    2. ページ単位で取得し、ドキュメントとウォーターマークを同じバルクで書き込み
    3. 同一タイムスタンプが続く場合はオフセットまたは1秒進めて継続
    4. フル同期の場合はパス開始時刻より前に書き込まれたレコードを削除
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from tidemark.errors import (
    ConfigurationError,
    ErrorHandler,
    MalformedRecordError,
    SyncCancelledError,
    TidemarkError,
    get_error_handler,
)
from tidemark.index.base import BulkRequest, IndexStore
from tidemark.observability import Observability, get_observability
from tidemark.sync.cancellation import CancellationToken
from tidemark.sync.protocols import (
    DocumentMapperProtocol,
    IndexingListener,
    RemoteSystemClientProtocol,
    StateStoreProtocol,
)
from tidemark.sync.reaper import StaleDocumentReaper
from tidemark.sync.types import IndexingInfoSnapshot, SpaceIndexingInfo

logger = logging.getLogger(__name__)

# 同一タイムスタンプのページで総件数が不明な場合の前進幅
TIE_ADVANCE = timedelta(seconds=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _error_message(error: BaseException) -> str:
    if isinstance(error, TidemarkError):
        return error.message
    return str(error) or error.__class__.__name__


class SpaceIndexer:
    """スペース単位の同期パス

    インスタンスは1パスにつき1つ生成し、``run`` は一度だけ呼び出せる。

    Attributes:
        space_key: 対象スペース
        full_update: フル同期として生成されたか

    Example:
        >>> indexer = SpaceIndexer(
        ...     "DOC",
        ...     full_update=False,
        ...     remote_client=client,
        ...     index_store=store,
        ...     state_store=state,
        ...     mapper=mapper,
        ...     listener=coordinator,
        ... )
        >>> info = await indexer.run()
        >>> print(info.documents_updated, info.finished_ok)
    """

    def __init__(
        self,
        space_key: str,
        full_update: bool,
        remote_client: RemoteSystemClientProtocol,
        index_store: IndexStore,
        state_store: StateStoreProtocol,
        mapper: DocumentMapperProtocol,
        cancellation: CancellationToken | None = None,
        listener: IndexingListener | None = None,
        clock: Callable[[], datetime] | None = None,
        observability: Observability | None = None,
        error_handler: ErrorHandler | None = None,
        scroll_page_size: int = 100,
    ) -> None:
        if space_key is None or not space_key.strip():
            raise ConfigurationError(
                "space_key must be defined",
                key="space_key",
                component="sync.indexer",
            )

        self.space_key = space_key
        self.full_update = full_update
        self.remote_client = remote_client
        self.index_store = index_store
        self.state_store = state_store
        self.mapper = mapper
        self.cancellation = cancellation or CancellationToken()
        self.listener = listener
        self.clock = clock or _utc_now
        self.observability = observability or get_observability()
        self.error_handler = error_handler or get_error_handler()
        self.reaper = StaleDocumentReaper(
            index_store, mapper, self.cancellation, page_size=scroll_page_size
        )

        self._info: SpaceIndexingInfo | None = None

    @property
    def indexing_info(self) -> IndexingInfoSnapshot | None:
        """現在の結果レコードのスナップショット（実行前は None）"""
        return self._info.snapshot() if self._info else None

    def _check_cancelled(self) -> None:
        if self.cancellation.is_cancelled:
            raise SyncCancelledError(
                "Interrupted because sync was cancelled",
                component="sync.indexer",
            )

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def run(self) -> IndexingInfoSnapshot:
        """同期パスを実行

        失敗してもこのメソッドは例外を送出せず、失敗を記録した結果を返す。
        ``asyncio.CancelledError`` のみ、結果を通知した後に再送出する。

        Returns:
            最終結果のスナップショット

        Raises:
            ConfigurationError: 同じインスタンスで2回呼び出した場合
        """
        if self._info is not None:
            raise ConfigurationError(
                "SpaceIndexer instance can run only one pass",
                component="sync.indexer",
            )

        start_date = self.clock()
        started = time.monotonic()
        info = SpaceIndexingInfo(
            space_key=self.space_key,
            full_update=self.full_update,
            start_date=start_date,
        )
        self._info = info
        tags = {"space_key": self.space_key}
        obs = self.observability
        failure: BaseException | None = None

        logger.info(
            f"Starting {'full' if self.full_update else 'incremental'} "
            f"update for space {self.space_key}"
        )
        try:
            with obs.tracer.start_span(
                "sync.pass", {"space_key": self.space_key}
            ) as span:
                with obs.tracer.start_span("sync.update"):
                    await self._process_update(info)
                if info.full_update:
                    with obs.tracer.start_span("sync.delete"):
                        await self.reaper.reap(info, start_date)
                span.set_attribute("full_update", info.full_update)
                span.set_attribute("documents_updated", info.documents_updated)
            info.finish(True, time.monotonic() - started)
            logger.info(
                f"Finished {'full' if info.full_update else 'incremental'} "
                f"update for space {self.space_key}: "
                f"{info.documents_updated} updated, "
                f"{info.documents_deleted} documents and "
                f"{info.comments_deleted} comments deleted "
                f"in {info.time_elapsed:.3f}s"
            )
        except (Exception, asyncio.CancelledError) as e:
            failure = e
            info.finish(
                False,
                time.monotonic() - started,
                error_message=_error_message(e),
            )
            obs.metrics.increment("sync.pass_failed", tags=tags)
            self.error_handler.handle(
                e,
                component="sync.indexer",
                operation="run",
                reraise=False,
                space_key=self.space_key,
            )

        obs.metrics.increment("sync.documents_updated", info.documents_updated, tags)
        obs.metrics.increment("sync.documents_deleted", info.documents_deleted, tags)
        obs.metrics.increment("sync.comments_deleted", info.comments_deleted, tags)
        obs.metrics.timer("sync.pass_duration_ms", info.time_elapsed * 1000, tags)

        snapshot = info.snapshot()
        self._notify_listener(snapshot)

        if isinstance(failure, asyncio.CancelledError):
            raise failure
        return snapshot

    def _notify_listener(self, snapshot: IndexingInfoSnapshot) -> None:
        if self.listener is None:
            return
        try:
            self.listener.on_indexing_finished(snapshot)
        except Exception:
            logger.exception(
                f"Indexing listener failed for space {self.space_key}"
            )

    # ------------------------------------------------------------------
    # Update phase
    # ------------------------------------------------------------------

    async def _process_update(self, info: SpaceIndexingInfo) -> None:
        """変更ドキュメントを取得してインデックスに反映"""
        updated_after: datetime | None = None
        if not info.full_update:
            updated_after = await self.state_store.read_watermark(self.space_key)
            if updated_after is None:
                logger.info(
                    f"No watermark stored for space {self.space_key}, "
                    f"switching to full update"
                )
                info.force_full_update()
        updated_after_starting = updated_after

        last: datetime | None = None
        start_at = 0
        cont = True
        while cont:
            self._check_cancelled()
            page = await self.remote_client.get_changed_documents(
                self.space_key, start_at, updated_after
            )
            count = page.documents_count
            if count == 0:
                break

            self._check_cancelled()
            first: datetime | None = None
            bulk = BulkRequest()
            for document in page.documents:
                document_id = self.mapper.extract_document_id(document)
                if document_id is None:
                    raise MalformedRecordError(
                        f"Document ID not found in remote system response for "
                        f"space {self.space_key} within data: {document}",
                        component="sync.indexer",
                    )
                updated = self.mapper.extract_document_updated(document)
                if updated is None:
                    raise MalformedRecordError(
                        f"Last update timestamp not found in data for document "
                        f"{document_id}",
                        document_id=document_id,
                        component="sync.indexer",
                    )
                assert last is None or first is None or updated >= last, (
                    f"Remote documents are not ordered by update timestamp: "
                    f"{document_id}"
                )
                if first is None:
                    first = updated
                last = updated

                logger.debug(
                    f"Indexing document {document_id} updated at {updated} "
                    f"in space {self.space_key}"
                )
                self.mapper.index_document(bulk, self.space_key, document)
                info.increment_documents_updated()
                self._check_cancelled()

            assert first is not None and last is not None
            await self.state_store.store_watermark(self.space_key, last, bulk)
            await self.index_store.execute_bulk(bulk)

            if first != last:
                updated_after = last
                if page.total is not None:
                    cont = page.total > page.start_at + count
                else:
                    cont = True
                start_at = 0
            elif page.total is not None:
                start_at = page.start_at + count
                cont = page.total > start_at
            else:
                logger.warning(
                    f"All {count} documents returned for space {self.space_key} "
                    f"share update timestamp {last} and the remote system does "
                    f"not report a total count; moving on by one second, "
                    f"documents updated within that second may be skipped"
                )
                start_at = 0
                updated_after = last + TIE_ADVANCE
                cont = True

        if (
            info.documents_updated > 0
            and last is not None
            and updated_after_starting is not None
            and updated_after_starting == last
        ):
            # 境界上のドキュメントを毎回取得し続けないよう1秒進める
            await self.state_store.store_watermark(
                self.space_key, last + TIE_ADVANCE, None
            )
