# tidemark Config Manager
"""
tidemark.api.config - 設定マネージャー
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from tidemark.api.base import LoggingConfig, StoreConfig, TidemarkConfig
from tidemark.errors import ConfigurationError
from tidemark.index.azure_search import AzureSearchStoreConfig
from tidemark.mapper.config import IndexStructureConfig
from tidemark.remote.base import RemoteClientConfig

DEFAULT_CONFIG_PATHS = (
    Path("./tidemark.yaml"),
    Path("./tidemark.yml"),
    Path("./config/tidemark.yaml"),
)


class ConfigManager:
    """設定マネージャー"""

    def __init__(self, config_path: str | Path | None = None):
        self.config_path = Path(config_path) if config_path else None
        self._config: TidemarkConfig | None = None

    @classmethod
    def from_yaml(cls, path: str | Path) -> ConfigManager:
        """YAMLファイルから読み込み"""
        manager = cls(path)
        manager.load()
        return manager

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> ConfigManager:
        """辞書から作成"""
        manager = cls()
        manager._config = cls._parse_config(config_dict)
        return manager

    @classmethod
    def from_config(cls, config: TidemarkConfig) -> ConfigManager:
        """TidemarkConfigから作成"""
        manager = cls()
        manager._config = config
        return manager

    def load(self) -> TidemarkConfig:
        """設定を読み込み

        Raises:
            ConfigurationError: YAML が不正な場合
        """
        if not self.config_path or not self.config_path.exists():
            self._config = TidemarkConfig()
            return self._config

        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in config file {self.config_path}: {e}",
                cause=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {self.config_path} must contain a mapping"
            )
        self._config = self._parse_config(data)
        return self._config

    def save(self, path: str | Path | None = None) -> None:
        """設定を保存"""
        if self._config is None:
            return

        save_path = Path(path) if path else self.config_path
        if save_path is None:
            raise ValueError("No path specified for saving config")

        save_path.parent.mkdir(parents=True, exist_ok=True)

        data = self._config.to_dict()
        with open(save_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    @staticmethod
    def _parse_config(data: dict[str, Any]) -> TidemarkConfig:
        """設定をパース"""
        store_raw = dict(data.get("store") or {})
        azure_raw = store_raw.pop("azure", None)
        try:
            store = StoreConfig(
                **{k: v for k, v in store_raw.items() if k in StoreConfig.__dataclass_fields__}
            )
        except ValueError as e:
            raise ConfigurationError(
                f"Unsupported value '{store_raw.get('backend')}' for "
                f"'store/backend' configuration!",
                key="store/backend",
                cause=e,
            ) from e
        if azure_raw is not None or store.backend.value == "azure":
            store.azure = AzureSearchStoreConfig.from_dict(azure_raw)

        logging_raw = data.get("logging") or {}
        logging_config = LoggingConfig(
            **{k: v for k, v in logging_raw.items() if k in LoggingConfig.__dataclass_fields__}
        )

        return TidemarkConfig(
            remote=RemoteClientConfig.from_dict(data.get("remote")),
            index=IndexStructureConfig.from_dict(data.get("index")),
            store=store,
            logging=logging_config,
        )

    @property
    def config(self) -> TidemarkConfig:
        """設定を取得"""
        if self._config is None:
            self._config = self.load()
        return self._config


def find_config_path(config_path: str | Path | None = None) -> Path | None:
    """設定ファイルを探索"""
    candidates = [Path(config_path)] if config_path else list(DEFAULT_CONFIG_PATHS)
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def load_config(path: str | Path | None = None) -> TidemarkConfig:
    """設定を読み込むヘルパー関数"""
    manager = ConfigManager(path)
    return manager.load()
