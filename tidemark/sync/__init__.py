# Sync Module
"""
tidemark.sync - 同期エンジン

- SpaceIndexer: ウォーターマークに基づく増分／フル同期パス
- StaleDocumentReaper: フル同期後の古いレコード削除
- SpaceIndexingInfo: パスの結果レコード
"""

from tidemark.sync.cancellation import CancellationToken
from tidemark.sync.indexer import TIE_ADVANCE, SpaceIndexer
from tidemark.sync.protocols import (
    DocumentMapperProtocol,
    IndexingListener,
    RemoteSystemClientProtocol,
    StateStoreProtocol,
)
from tidemark.sync.reaper import StaleDocumentReaper
from tidemark.sync.types import (
    ChangedDocumentsPage,
    IndexingInfoSnapshot,
    SpaceIndexingInfo,
)

__all__ = [
    "SpaceIndexer",
    "StaleDocumentReaper",
    "CancellationToken",
    "TIE_ADVANCE",
    # Types
    "ChangedDocumentsPage",
    "IndexingInfoSnapshot",
    "SpaceIndexingInfo",
    # Protocols
    "DocumentMapperProtocol",
    "IndexingListener",
    "RemoteSystemClientProtocol",
    "StateStoreProtocol",
]
