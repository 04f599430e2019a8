# Document Data Preprocessors
"""
インデックス化の前に生ドキュメントを加工する前処理。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from tidemark.errors import ConfigurationError

logger = logging.getLogger(__name__)


class StructuredContentPreprocessor(ABC):
    """前処理の基底クラス

    Attributes:
        name: 前処理の名前（ログ出力用）
    """

    def __init__(self, name: str | None = None) -> None:
        self.name = name or self.__class__.__name__

    def init(self, settings: dict[str, Any]) -> None:
        """設定を読み込み（必要に応じてサブクラスで実装）"""
        return None

    @abstractmethod
    def preprocess_data(self, data: dict[str, Any]) -> dict[str, Any]:
        """データを加工して返す"""
        ...


class AddValuePreprocessor(StructuredContentPreprocessor):
    """固定値をフィールドに設定する

    Settings:
        field: 設定先フィールド（ドット区切りで入れ子を作成）
        value: 設定する値
    """

    def init(self, settings: dict[str, Any]) -> None:
        self.field = settings.get("field")
        if not self.field:
            raise ConfigurationError(
                f"'field' setting is mandatory for preprocessor '{self.name}'",
                key="preprocessors/settings/field",
            )
        self.value = settings.get("value")

    def preprocess_data(self, data: dict[str, Any]) -> dict[str, Any]:
        target = data
        *parents, leaf = self.field.split(".")
        for part in parents:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[leaf] = self.value
        return data


class RemoveFieldsPreprocessor(StructuredContentPreprocessor):
    """トップレベルのフィールドを削除する

    Settings:
        fields: 削除するフィールド名のリスト
    """

    def init(self, settings: dict[str, Any]) -> None:
        self.fields = list(settings.get("fields") or [])

    def preprocess_data(self, data: dict[str, Any]) -> dict[str, Any]:
        for field_name in self.fields:
            data.pop(field_name, None)
        return data


PREPROCESSOR_TYPES: dict[str, type[StructuredContentPreprocessor]] = {
    "add_value": AddValuePreprocessor,
    "remove_fields": RemoveFieldsPreprocessor,
}


def create_preprocessor(definition: dict[str, Any]) -> StructuredContentPreprocessor:
    """設定から前処理を作成

    Args:
        definition: ``{"type": ..., "name": ..., "settings": {...}}``

    Raises:
        ConfigurationError: 未知の種類の場合
    """
    type_name = definition.get("type")
    preprocessor_class = PREPROCESSOR_TYPES.get(str(type_name))
    if preprocessor_class is None:
        raise ConfigurationError(
            f"Unknown preprocessor type '{type_name}', "
            f"supported: {', '.join(sorted(PREPROCESSOR_TYPES))}",
            key="index/preprocessors/type",
        )
    preprocessor = preprocessor_class(definition.get("name"))
    preprocessor.init(definition.get("settings") or {})
    logger.debug(f"Created preprocessor {preprocessor.name} of type {type_name}")
    return preprocessor
