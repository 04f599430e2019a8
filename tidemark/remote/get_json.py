# GET JSON Remote Client
"""
tidemark.remote.get_json - HTTP GET で JSON を返すリモートシステム用クライアント

URL テンプレートに検索条件を埋め込み、レスポンス内のパスから
ドキュメント配列と総件数を取り出す。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from urllib.parse import quote

from tidemark.errors import ConfigurationError, SourceCommunicationError
from tidemark.remote.base import RemoteClientConfig, RemoteSystemClient
from tidemark.sync.types import ChangedDocumentsPage
from tidemark.utils.datetime_utils import DateTimeFormatter
from tidemark.utils.paths import get_by_path

logger = logging.getLogger(__name__)


class GetJSONClient(RemoteSystemClient):
    """GET JSON クライアント

    Example:
        >>> config = RemoteClientConfig(
        ...     url_get_documents=(
        ...         "https://example.org/api/docs?space={space}"
        ...         "&from={startAtIndex}&updatedAfter={updatedAfter}"
        ...     ),
        ...     get_docs_res_field_documents="items",
        ...     get_docs_res_field_totalcount="total",
        ... )
        >>> async with GetJSONClient(config) as client:
        ...     page = await client.get_changed_documents("DOC", 0, None)
    """

    def __init__(
        self,
        config: RemoteClientConfig | None = None,
        formatter: DateTimeFormatter | None = None,
    ):
        super().__init__(config)
        if not self.config.url_get_documents:
            raise ConfigurationError(
                "String value must be provided for 'remote/url_get_documents' "
                "configuration!",
                key="remote/url_get_documents",
            )
        self.formatter = formatter or DateTimeFormatter()

    @property
    def client_name(self) -> str:
        return "GetJSON remote system"

    def prepare_url(
        self,
        space_key: str,
        start_at: int,
        updated_after: datetime | None,
    ) -> str:
        """URL テンプレートを展開"""
        updated_after_value = (
            self.formatter.format(updated_after, self.config.updated_after_format)
            if updated_after is not None
            else ""
        )
        return (
            self.config.url_get_documents
            .replace("{space}", quote(space_key, safe=""))
            .replace("{startAtIndex}", str(start_at))
            .replace("{updatedAfter}", quote(updated_after_value or "", safe=""))
        )

    async def get_changed_documents(
        self,
        space_key: str,
        start_at: int,
        updated_after: datetime | None,
    ) -> ChangedDocumentsPage:
        url = self.prepare_url(space_key, start_at, updated_after)
        logger.debug(f"Fetching changed documents from {url}")
        response = await self._request("GET", url)
        return self.parse_response(response, start_at, url)

    def parse_response(
        self,
        response: Any,
        start_at: int,
        url: str | None = None,
    ) -> ChangedDocumentsPage:
        """レスポンスJSONをページに変換

        Raises:
            SourceCommunicationError: レスポンスの形式が不正な場合
        """
        documents = get_by_path(response, self.config.get_docs_res_field_documents)
        if documents is None:
            documents = []
        if not isinstance(documents, list):
            raise SourceCommunicationError(
                f"Remote response field "
                f"'{self.config.get_docs_res_field_documents or '<root>'}' "
                f"must contain a list of documents",
                url=url,
            )
        for document in documents:
            if not isinstance(document, dict):
                raise SourceCommunicationError(
                    "Remote response contains a document which is not a JSON object",
                    url=url,
                )

        total: int | None = None
        if self.config.get_docs_res_field_totalcount:
            raw_total = get_by_path(response, self.config.get_docs_res_field_totalcount)
            if raw_total is not None:
                try:
                    total = int(raw_total)
                except (TypeError, ValueError) as e:
                    raise SourceCommunicationError(
                        f"Remote response field "
                        f"'{self.config.get_docs_res_field_totalcount}' "
                        f"must contain an integer, got {raw_total!r}",
                        url=url,
                        cause=e,
                    ) from e

        return ChangedDocumentsPage(documents=documents, start_at=start_at, total=total)


def create_get_json_client(
    url_get_documents: str,
    **kwargs: Any,
) -> GetJSONClient:
    """GetJSONクライアントを作成

    Args:
        url_get_documents: URL テンプレート
        **kwargs: RemoteClientConfig のその他の設定
    """
    return GetJSONClient(RemoteClientConfig(url_get_documents=url_get_documents, **kwargs))
