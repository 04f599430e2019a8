# Index-backed State Store
"""
ウォーターマークをインデックスストア内のレコードとして永続化する。

ウォーターマークの書き込みはドキュメントの書き込みと同じバルクに
追加できるため、ページ単位で原子的にコミットされる。
"""

from __future__ import annotations

import logging
from datetime import datetime

from tidemark.errors import IndexStoreError
from tidemark.index.base import BulkRequest, IndexStore
from tidemark.utils.datetime_utils import format_iso_datetime, parse_iso_datetime

logger = logging.getLogger(__name__)

STATE_RECORD_TYPE = "sync_state"
WATERMARK_PROPERTY = "lastIndexedDocumentUpdateDate"


class IndexStateStore:
    """インデックスベースの状態ストア

    Attributes:
        index_store: 書き込み先のインデックスストア
        index_name: 状態レコードを保存するインデックス名
        property_name: ウォーターマークのプロパティ名
    """

    def __init__(
        self,
        index_store: IndexStore,
        index_name: str = "tidemark_state",
        property_name: str = WATERMARK_PROPERTY,
    ) -> None:
        self.index_store = index_store
        self.index_name = index_name
        self.property_name = property_name

    def _state_id(self, space_key: str) -> str:
        return f"_{self.property_name}_{space_key}"

    async def read_watermark(self, space_key: str) -> datetime | None:
        """ウォーターマークを読み込み（未保存の場合は None）"""
        record = await self.index_store.get_document(
            self.index_name, STATE_RECORD_TYPE, self._state_id(space_key)
        )
        if not record:
            return None
        value = record.get("value")
        try:
            return parse_iso_datetime(value) if isinstance(value, str) else None
        except ValueError as e:
            raise IndexStoreError(
                f"Invalid watermark value {value!r} stored for space {space_key}",
                index_name=self.index_name,
                cause=e,
            ) from e

    async def store_watermark(
        self,
        space_key: str,
        value: datetime,
        bulk: BulkRequest | None = None,
    ) -> None:
        """ウォーターマークを保存

        ``bulk`` が指定された場合は書き込みを追加するだけで実行しない。
        指定されない場合は単独のバルクとして即時実行する。
        """
        document = {
            "space_key": space_key,
            "property": self.property_name,
            "value": format_iso_datetime(value, timespec="microseconds"),
        }
        if bulk is not None:
            bulk.upsert(
                self.index_name, STATE_RECORD_TYPE, self._state_id(space_key), document
            )
            return

        own_bulk = BulkRequest()
        own_bulk.upsert(
            self.index_name, STATE_RECORD_TYPE, self._state_id(space_key), document
        )
        await self.index_store.execute_bulk(own_bulk)
        logger.debug(f"Stored watermark {document['value']} for space {space_key}")
