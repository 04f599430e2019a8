# tidemark API Base Types
"""
tidemark.api.base - 設定の基本型定義
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from tidemark.index.azure_search import AzureSearchStoreConfig
from tidemark.mapper.config import IndexStructureConfig
from tidemark.remote.base import RemoteClientConfig


class StoreBackend(Enum):
    """インデックスストアの種類"""

    MEMORY = "memory"  # プロセス内のみ（テスト用）
    LOCAL = "local"  # JSON ファイル
    AZURE = "azure"  # Azure AI Search


@dataclass
class StoreConfig:
    """インデックスストア設定"""

    backend: StoreBackend = StoreBackend.LOCAL

    # ローカル設定
    local_path: Path = field(default_factory=lambda: Path("./output/index.json"))

    # 状態レコードを保存するインデックス
    state_index_name: str = "tidemark_state"

    # スクロールのページサイズ
    scroll_page_size: int = 100

    # Azure設定（オプション）
    azure: AzureSearchStoreConfig | None = None

    def __post_init__(self):
        """型変換"""
        if isinstance(self.backend, str):
            self.backend = StoreBackend(self.backend.lower())
        if isinstance(self.local_path, str):
            self.local_path = Path(self.local_path)


@dataclass
class LoggingConfig:
    """ログ設定"""

    level: str = "info"
    file: str | None = None
    metrics_enabled: bool = True

    def __post_init__(self):
        """環境変数からの取得"""
        env_level = os.environ.get("TIDEMARK_LOG_LEVEL")
        if env_level:
            self.level = env_level
        self.level = self.level.lower()


@dataclass
class TidemarkConfig:
    """tidemark 設定"""

    remote: RemoteClientConfig = field(default_factory=RemoteClientConfig)
    index: IndexStructureConfig = field(default_factory=IndexStructureConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換（シークレットは含めない）"""
        store: dict[str, Any] = {
            "backend": self.store.backend.value,
            "local_path": str(self.store.local_path),
            "state_index_name": self.store.state_index_name,
            "scroll_page_size": self.store.scroll_page_size,
        }
        if self.store.azure is not None:
            store["azure"] = {
                "endpoint": self.store.azure.endpoint,
                "use_managed_identity": self.store.azure.use_managed_identity,
                "filterable_fields": self.store.azure.filterable_fields,
                "refresh_wait_seconds": self.store.azure.refresh_wait_seconds,
                "max_retries": self.store.azure.max_retries,
                "retry_delay": self.store.azure.retry_delay,
            }
        return {
            "remote": self.remote.to_dict(),
            "index": self.index.to_dict(),
            "store": store,
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
                "metrics_enabled": self.logging.metrics_enabled,
            },
        }
