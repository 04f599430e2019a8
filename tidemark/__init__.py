# tidemark - Incremental Search Index Sync
"""
tidemark: リモートシステムのドキュメントとコメントを検索インデックスへ
増分同期するライブラリ

ウォーターマーク（最後に取り込んだ更新日時）以降の変更をページ単位で取得し、
フル同期の際にはリモートに存在しなくなったレコードを削除する。
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "SpaceIndexer",
    "IndexingInfoSnapshot",
    "CancellationToken",
    "ConfigManager",
    "TidemarkConfig",
    "build_space_indexer",
]


# Lazy imports
def __getattr__(name):
    """Lazy import for the main entry points."""
    if name == "SpaceIndexer":
        from tidemark.sync.indexer import SpaceIndexer
        return SpaceIndexer
    if name == "IndexingInfoSnapshot":
        from tidemark.sync.types import IndexingInfoSnapshot
        return IndexingInfoSnapshot
    if name == "CancellationToken":
        from tidemark.sync.cancellation import CancellationToken
        return CancellationToken
    if name in ("ConfigManager", "TidemarkConfig"):
        from tidemark.api import ConfigManager, TidemarkConfig
        return ConfigManager if name == "ConfigManager" else TidemarkConfig
    if name == "build_space_indexer":
        from tidemark.api.factory import build_space_indexer
        return build_space_indexer
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
