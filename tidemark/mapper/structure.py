# Document With Comments Mapper
"""
リモートドキュメント（とそのコメント）をインデックスレコードに変換する。

コメントの保存方式:
    - NONE: ドキュメントのみ
    - EMBEDDED: ドキュメント内の配列
    - CHILD / STANDALONE: コメントごとに別レコード
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from tidemark.errors import ConfigurationError, MalformedRecordError
from tidemark.index.base import BulkRequest, ScrollSearchRequest, SearchHit
from tidemark.mapper.config import CommentIndexingMode, FieldConfig, IndexStructureConfig
from tidemark.mapper.preprocessor import StructuredContentPreprocessor, create_preprocessor
from tidemark.utils.datetime_utils import (
    format_iso_datetime,
    from_epoch_millis,
    parse_iso_datetime,
)
from tidemark.utils.paths import get_by_path

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentWithCommentsMapper:
    """ドキュメントとコメントのマッパー

    Example:
        >>> config = IndexStructureConfig.from_dict({
        ...     "remote_field_document_id": "key",
        ...     "remote_field_updated": "fields.updated",
        ...     "comment_mode": "child",
        ... })
        >>> mapper = DocumentWithCommentsMapper(config)
        >>> bulk = BulkRequest()
        >>> mapper.index_document(bulk, "ORG", raw_document)
    """

    def __init__(
        self,
        config: IndexStructureConfig,
        updated_mandatory: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        config.validate(updated_mandatory=updated_mandatory)
        self.config = config
        self.clock = clock or _utc_now
        self.preprocessors: list[StructuredContentPreprocessor] = []
        for definition in config.preprocessors:
            self.add_data_preprocessor(create_preprocessor(definition))

    @property
    def comment_mode(self) -> CommentIndexingMode:
        return self.config.comment_mode

    # ------------------------------------------------------------------
    # Preprocessing
    # ------------------------------------------------------------------

    def add_data_preprocessor(
        self,
        preprocessor: StructuredContentPreprocessor | None,
    ) -> None:
        """前処理を追加（None は無視）"""
        if preprocessor is None:
            return
        self.preprocessors.append(preprocessor)

    def preprocess_document_data(
        self,
        space_key: str,
        document: dict[str, Any] | None,
    ) -> dict[str, Any] | None:
        """前処理を順に適用"""
        if document is None:
            return None
        for preprocessor in self.preprocessors:
            document = preprocessor.preprocess_data(document)
        return document

    # ------------------------------------------------------------------
    # Value extraction
    # ------------------------------------------------------------------

    def extract_document_id(self, document: dict[str, Any]) -> str | None:
        """ドキュメントIDを取得

        Raises:
            ConfigurationError: 値の型が文字列でも整数でもない場合
        """
        value = get_by_path(document, self.config.remote_field_document_id)
        if value is None:
            return None
        if isinstance(value, str):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        raise ConfigurationError(
            f"Remote data field '{self.config.remote_field_document_id}' must "
            f"contain string or integer value to be used as document id",
            key="index/remote_field_document_id",
        )

    def extract_document_updated(self, document: dict[str, Any]) -> datetime | None:
        """更新日時を取得

        整数または数字のみの文字列はエポックミリ秒、それ以外の文字列は ISO 8601。

        Raises:
            MalformedRecordError: 解析できない値の場合
        """
        if not self.config.remote_field_updated:
            return None
        value = get_by_path(document, self.config.remote_field_updated)
        if value is None:
            return None
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        if isinstance(value, int) and not isinstance(value, bool):
            return from_epoch_millis(value)
        if isinstance(value, str):
            text = value.strip()
            try:
                if text.lstrip("-").isdigit():
                    return from_epoch_millis(int(text))
                return parse_iso_datetime(text)
            except ValueError as e:
                raise MalformedRecordError(
                    f"Remote data field '{self.config.remote_field_updated}' is "
                    f"not recognized: {value}",
                    field=self.config.remote_field_updated,
                    cause=e,
                ) from e
        raise MalformedRecordError(
            f"Remote data field '{self.config.remote_field_updated}' must contain "
            f"ISO date string or integer millisecond timestamp",
            field=self.config.remote_field_updated,
        )

    def extract_document_deleted(self, document: dict[str, Any] | None) -> bool:
        """削除フラグを判定（値の比較は大文字小文字を区別する）

        Raises:
            ConfigurationError: 値がリストや辞書の場合
        """
        if document is None or not self.config.remote_field_deleted:
            return False
        value = get_by_path(document, self.config.remote_field_deleted)
        if value is None:
            return False
        if value is True:
            return True
        if isinstance(value, (dict, list)):
            raise ConfigurationError(
                f"Remote data field '{self.config.remote_field_deleted}' must "
                f"contain simple value to be compared with deleted flag value",
                key="index/remote_field_deleted",
            )
        if isinstance(value, bool):
            value = "false"
        return str(value) == self.config.remote_field_deleted_value

    def _extract_comments(self, document: dict[str, Any]) -> list[dict[str, Any]]:
        comments = get_by_path(document, self.config.remote_field_comments)
        if not isinstance(comments, list):
            return []
        return [c for c in comments if isinstance(c, dict)]

    def _extract_comment_id(self, comment: dict[str, Any]) -> str | None:
        value = get_by_path(comment, self.config.remote_field_comment_id)
        if value is None or isinstance(value, (dict, list, bool)):
            return None
        return str(value)

    # ------------------------------------------------------------------
    # Index writes
    # ------------------------------------------------------------------

    def get_document_search_index_name(self, space_key: str) -> str:
        """スペースのドキュメントを保存するインデックス名"""
        return self.config.index_name.replace("{space}", space_key.lower())

    def index_document(
        self,
        bulk: BulkRequest,
        space_key: str,
        document: dict[str, Any],
    ) -> None:
        """ドキュメント（とコメント）の書き込みをバルクに追加

        削除フラグが立っている場合は削除操作を追加する。
        """
        document_id = self.extract_document_id(document)
        if document_id is None:
            raise ConfigurationError(
                f"Document ID not found in data for space {space_key}",
                key="index/remote_field_document_id",
            )
        index_name = self.get_document_search_index_name(space_key)
        config = self.config

        document["spaceKey"] = space_key
        document = self.preprocess_document_data(space_key, document) or document
        comments = self._extract_comments(document)

        if self.extract_document_deleted(document):
            bulk.delete(index_name, config.document_type, document_id)
            if self.comment_mode.is_extra_document_indexed:
                for comment in comments:
                    comment_id = self._extract_comment_id(comment)
                    if comment_id is not None:
                        bulk.delete(
                            index_name,
                            config.comment_type,
                            comment_id,
                            parent_id=self._comment_parent(document_id),
                        )
            return

        indexed_at = format_iso_datetime(self.clock(), timespec="microseconds")
        bulk.upsert(
            index_name,
            config.document_type,
            document_id,
            self.prepare_document(space_key, document_id, document, indexed_at, comments),
        )

        if self.comment_mode.is_extra_document_indexed:
            for comment in comments:
                comment_id = self._extract_comment_id(comment)
                if comment_id is None:
                    logger.warning(
                        f"Comment without id skipped in document {document_id}"
                    )
                    continue
                bulk.upsert(
                    index_name,
                    config.comment_type,
                    comment_id,
                    self.prepare_comment(space_key, document_id, comment, indexed_at),
                    parent_id=self._comment_parent(document_id),
                )

    def _comment_parent(self, document_id: str) -> str | None:
        if self.comment_mode == CommentIndexingMode.CHILD:
            return document_id
        return None

    def _base_record(
        self,
        space_key: str,
        document_id: str,
        indexed_at: str | None,
    ) -> dict[str, Any]:
        config = self.config
        return {
            config.field_source: config.source_name,
            config.field_space_key: space_key,
            config.field_document_id: document_id,
            config.field_indexed_at: indexed_at,
        }

    def prepare_document(
        self,
        space_key: str,
        document_id: str,
        document: dict[str, Any],
        indexed_at: str | None,
        comments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """ドキュメントレコードを作成"""
        out = self._base_record(space_key, document_id, indexed_at)
        self._add_fields(out, self.config.fields, document)
        if self.comment_mode == CommentIndexingMode.EMBEDDED:
            comment_records = []
            for comment in comments if comments is not None else self._extract_comments(document):
                record: dict[str, Any] = {}
                self._add_fields(record, self.config.comment_fields, comment)
                comment_records.append(record)
            if comment_records:
                out[self.config.field_comments] = comment_records
        return out

    def prepare_comment(
        self,
        space_key: str,
        document_id: str,
        comment: dict[str, Any],
        indexed_at: str | None,
    ) -> dict[str, Any]:
        """コメントレコードを作成"""
        out = self._base_record(space_key, document_id, indexed_at)
        self._add_fields(out, self.config.comment_fields, comment)
        return out

    def _add_fields(
        self,
        out: dict[str, Any],
        fields: dict[str, FieldConfig],
        values: dict[str, Any],
    ) -> None:
        for index_field, field_config in fields.items():
            value_filter = (
                self.config.value_filters.get(field_config.value_filter)
                if field_config.value_filter
                else None
            )
            self.add_value_to_index(
                out, index_field, field_config.remote_field, values, value_filter
            )

    @staticmethod
    def add_value_to_index(
        out: dict[str, Any],
        index_field: str,
        remote_path: str,
        values: dict[str, Any] | None,
        value_filter: dict[str, str] | None = None,
    ) -> None:
        """リモートデータの値をフィールドに設定

        値が辞書または辞書のリストの場合、フィルタに含まれるキーのみを
        フィルタの名前に変換して設定する。値が無い場合は何もしない。
        """
        if values is None:
            return
        value = get_by_path(values, remote_path)
        if value is None:
            return
        if value_filter:
            value = _filter_value(value, value_filter)
        out[index_field] = value

    # ------------------------------------------------------------------
    # Stale record removal
    # ------------------------------------------------------------------

    def build_search_for_indexed_documents_not_updated_after(
        self,
        request: ScrollSearchRequest,
        space_key: str,
        boundary: datetime,
    ) -> None:
        """``boundary`` より前に書き込まれたレコードの検索条件を設定"""
        config = self.config
        request.index_name = self.get_document_search_index_name(space_key)
        request.record_types = [config.document_type]
        if self.comment_mode.is_extra_document_indexed:
            request.record_types.append(config.comment_type)
        request.term_filters = {
            config.field_source: config.source_name,
            config.field_space_key: space_key,
        }
        request.indexed_at_field = config.field_indexed_at
        request.indexed_before = boundary

    def delete_hit(self, bulk: BulkRequest, hit: SearchHit) -> bool:
        """ヒットの削除をバルクに追加

        Returns:
            ドキュメントなら True、コメントなら False
        """
        bulk.delete(hit.index_name, hit.record_type, hit.doc_id, parent_id=hit.parent_id)
        return hit.record_type == self.config.document_type


def _filter_value(value: Any, value_filter: dict[str, str]) -> Any:
    if isinstance(value, dict):
        return {
            value_filter[key]: item
            for key, item in value.items()
            if key in value_filter
        }
    if isinstance(value, list):
        return [_filter_value(item, value_filter) for item in value]
    return value
