# Index Structure Configuration
"""
リモートドキュメントをインデックスレコードに変換するための設定。

YAML の ``index`` セクションに対応する。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tidemark.errors import ConfigurationError


class CommentIndexingMode(str, Enum):
    """コメントの保存方式

    Attributes:
        NONE: コメントを保存しない
        EMBEDDED: ドキュメント内の配列として保存
        CHILD: 親ドキュメントを持つ別レコードとして保存
        STANDALONE: 独立した別レコードとして保存
    """

    NONE = "none"
    EMBEDDED = "embedded"
    CHILD = "child"
    STANDALONE = "standalone"

    @classmethod
    def parse(cls, value: str | CommentIndexingMode | None) -> CommentIndexingMode:
        """文字列から変換（空の場合は NONE）"""
        if isinstance(value, CommentIndexingMode):
            return value
        if value is None or not str(value).strip():
            return cls.NONE
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Unsupported value '{value}' for 'index/comment_mode' configuration!",
                key="index/comment_mode",
                cause=e,
            ) from e

    @property
    def is_extra_document_indexed(self) -> bool:
        """コメントを別レコードとして保存するか"""
        return self in (CommentIndexingMode.CHILD, CommentIndexingMode.STANDALONE)


@dataclass
class FieldConfig:
    """インデックスフィールドの設定

    Attributes:
        remote_field: リモートデータ内のドット区切りパス
        value_filter: 適用する値フィルタ名
    """

    remote_field: str
    value_filter: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"remote_field": self.remote_field}
        if self.value_filter:
            data["value_filter"] = self.value_filter
        return data


def _parse_fields(
    data: dict[str, Any] | None,
    config_key: str,
) -> dict[str, FieldConfig]:
    fields: dict[str, FieldConfig] = {}
    for index_field, definition in (data or {}).items():
        if not isinstance(definition, dict) or not definition.get("remote_field"):
            raise ConfigurationError(
                f"'remote_field' is not defined in 'index/{config_key}/{index_field}' "
                f"configuration",
                key=f"index/{config_key}/{index_field}",
            )
        fields[index_field] = FieldConfig(
            remote_field=definition["remote_field"],
            value_filter=definition.get("value_filter") or None,
        )
    return fields


@dataclass
class IndexStructureConfig:
    """インデックス構造設定

    Attributes:
        index_name: 検索インデックス名（``{space}`` をスペースキーに置換）
        document_type: ドキュメントのレコード種別
        comment_type: コメントのレコード種別
        source_name: ``field_source`` に書き込む同期元の名前
        remote_field_document_id: ドキュメントIDのパス（必須）
        remote_field_updated: 更新日時のパス
        remote_field_deleted: 削除フラグのパス
        remote_field_deleted_value: 削除を表す値
        remote_field_comments: コメント配列のパス
        remote_field_comment_id: コメントIDのパス
        field_source: 同期元名を保存するフィールド
        field_space_key: スペースキーを保存するフィールド
        field_document_id: ドキュメントIDを保存するフィールド
        field_comments: 埋め込みコメントを保存するフィールド
        field_indexed_at: 書き込み日時を保存するフィールド
        comment_mode: コメントの保存方式
        fields: ドキュメントのフィールドマッピング
        comment_fields: コメントのフィールドマッピング
        value_filters: 値フィルタ（名前 -> {リモートキー: インデックスキー}）
        preprocessors: 前処理の定義
    """

    index_name: str = "tidemark_documents"
    document_type: str = "document"
    comment_type: str = "comment"
    source_name: str = "tidemark"

    remote_field_document_id: str | None = None
    remote_field_updated: str | None = None
    remote_field_deleted: str | None = None
    remote_field_deleted_value: str | None = None
    remote_field_comments: str = "comments"
    remote_field_comment_id: str = "id"

    field_source: str = "source"
    field_space_key: str = "space_key"
    field_document_id: str = "document_id"
    field_comments: str = "comments"
    field_indexed_at: str = "indexed_at"

    comment_mode: CommentIndexingMode = CommentIndexingMode.NONE

    fields: dict[str, FieldConfig] = field(default_factory=dict)
    comment_fields: dict[str, FieldConfig] = field(default_factory=dict)
    value_filters: dict[str, dict[str, str]] = field(default_factory=dict)
    preprocessors: list[dict[str, Any]] = field(default_factory=list)

    def validate(self, updated_mandatory: bool = True) -> None:
        """設定を検証

        Raises:
            ConfigurationError: 必須設定の欠落や矛盾がある場合
        """
        if not self.remote_field_document_id or not self.remote_field_document_id.strip():
            raise ConfigurationError(
                "String value must be provided for 'index/remote_field_document_id' "
                "configuration!",
                key="index/remote_field_document_id",
            )
        if updated_mandatory and (
            not self.remote_field_updated or not self.remote_field_updated.strip()
        ):
            raise ConfigurationError(
                "String value must be provided for 'index/remote_field_updated' "
                "configuration!",
                key="index/remote_field_updated",
            )
        if bool(self.remote_field_deleted) != bool(self.remote_field_deleted_value):
            raise ConfigurationError(
                "Configuration fields 'index/remote_field_deleted' and "
                "'index/remote_field_deleted_value' must be both set or both empty",
                key="index/remote_field_deleted",
            )
        for config_key, fields in (
            ("fields", self.fields),
            ("comment_fields", self.comment_fields),
        ):
            for index_field, field_config in fields.items():
                if (
                    field_config.value_filter
                    and field_config.value_filter not in self.value_filters
                ):
                    raise ConfigurationError(
                        f"Filter definition not found for filter name "
                        f"'{field_config.value_filter}' defined in "
                        f"'index/{config_key}/{index_field}/value_filter'",
                        key=f"index/{config_key}/{index_field}/value_filter",
                    )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "IndexStructureConfig":
        """辞書から作成"""
        data = dict(data or {})
        kwargs: dict[str, Any] = {
            key: value
            for key, value in data.items()
            if key in cls.__dataclass_fields__
            and key not in ("fields", "comment_fields", "comment_mode", "value_filters")
            and value is not None
        }
        for key in ("remote_field_deleted", "remote_field_deleted_value"):
            if isinstance(kwargs.get(key), bool):
                # YAML の true/false はリモートデータの文字列表現に合わせる
                kwargs[key] = "true" if kwargs[key] else "false"
            elif key in kwargs:
                kwargs[key] = str(kwargs[key]).strip() or None
        return cls(
            comment_mode=CommentIndexingMode.parse(data.get("comment_mode")),
            fields=_parse_fields(data.get("fields"), "fields"),
            comment_fields=_parse_fields(data.get("comment_fields"), "comment_fields"),
            value_filters={
                name: {str(k): str(v) for k, v in (mapping or {}).items()}
                for name, mapping in (data.get("value_filters") or {}).items()
            },
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return {
            "index_name": self.index_name,
            "document_type": self.document_type,
            "comment_type": self.comment_type,
            "source_name": self.source_name,
            "remote_field_document_id": self.remote_field_document_id,
            "remote_field_updated": self.remote_field_updated,
            "remote_field_deleted": self.remote_field_deleted,
            "remote_field_deleted_value": self.remote_field_deleted_value,
            "remote_field_comments": self.remote_field_comments,
            "remote_field_comment_id": self.remote_field_comment_id,
            "field_source": self.field_source,
            "field_space_key": self.field_space_key,
            "field_document_id": self.field_document_id,
            "field_comments": self.field_comments,
            "field_indexed_at": self.field_indexed_at,
            "comment_mode": self.comment_mode.value,
            "fields": {k: v.to_dict() for k, v in self.fields.items()},
            "comment_fields": {k: v.to_dict() for k, v in self.comment_fields.items()},
            "value_filters": self.value_filters,
            "preprocessors": self.preprocessors,
        }
