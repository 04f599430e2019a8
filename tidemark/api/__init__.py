# tidemark API Module
"""
tidemark.api - 設定とコンポーネント生成
"""

from tidemark.api.base import LoggingConfig, StoreBackend, StoreConfig, TidemarkConfig
from tidemark.api.config import ConfigManager, find_config_path, load_config
from tidemark.api.factory import ComponentFactory, build_space_indexer

__all__ = [
    # Enums
    "StoreBackend",
    # Data Classes
    "TidemarkConfig",
    "StoreConfig",
    "LoggingConfig",
    # Config
    "ConfigManager",
    "find_config_path",
    "load_config",
    # Factory
    "ComponentFactory",
    "build_space_indexer",
]
