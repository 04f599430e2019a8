# Remote Source Client Base
"""
tidemark.remote.base - リモートソースクライアント基底クラス

共通のHTTPリクエスト処理とリトライロジック。
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import aiohttp

from tidemark.errors import SourceCommunicationError
from tidemark.sync.types import ChangedDocumentsPage

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class RemoteClientConfig:
    """リモートクライアント設定

    Attributes:
        url_get_documents: 変更ドキュメント取得URL
            （``{space}``、``{startAtIndex}``、``{updatedAfter}`` を置換）
        updated_after_format: ``{updatedAfter}`` のフォーマット（空の場合は ISO 8601）
        get_docs_res_field_documents: レスポンス内のドキュメント配列のパス
            （空の場合はレスポンス自体が配列）
        get_docs_res_field_totalcount: レスポンス内の総件数のパス
        username: Basic認証ユーザー名
        password: Basic認証パスワード
        headers: 追加ヘッダー
        timeout: リクエストタイムアウト（秒）
        max_retries: 最大試行回数
        retry_delay: リトライ間隔（秒）
        user_agent: User-Agentヘッダー
    """
    url_get_documents: str = ""
    updated_after_format: str | None = None
    get_docs_res_field_documents: str | None = None
    get_docs_res_field_totalcount: str | None = None
    username: str | None = None
    password: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    user_agent: str = "tidemark/0.1"

    def __post_init__(self):
        """環境変数からの取得"""
        if self.password is None and self.username:
            self.password = os.environ.get("TIDEMARK_REMOTE_PASSWORD")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RemoteClientConfig":
        """辞書から作成"""
        data = data or {}
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換（パスワードは含めない）"""
        return {
            "url_get_documents": self.url_get_documents,
            "updated_after_format": self.updated_after_format,
            "get_docs_res_field_documents": self.get_docs_res_field_documents,
            "get_docs_res_field_totalcount": self.get_docs_res_field_totalcount,
            "username": self.username,
            "headers": self.headers,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
        }


# =============================================================================
# Base Client
# =============================================================================


class RemoteSystemClient(ABC):
    """リモートソースクライアントの基底クラス

    共通のHTTPリクエスト処理とリトライロジックを提供。
    5xx とコネクションエラーはリトライし、4xx は即座に失敗する。
    """

    def __init__(self, config: RemoteClientConfig | None = None):
        self.config = config or RemoteClientConfig()
        self._session: aiohttp.ClientSession | None = None

    @property
    @abstractmethod
    def client_name(self) -> str:
        """クライアント名"""
        ...

    async def _get_session(self) -> aiohttp.ClientSession:
        """HTTPセッションを取得"""
        if self._session is None or self._session.closed:
            auth = None
            if self.config.username:
                auth = aiohttp.BasicAuth(self.config.username, self.config.password or "")
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                headers={"User-Agent": self.config.user_agent, **self.config.headers},
                auth=auth,
            )
        return self._session

    async def close(self) -> None:
        """セッションをクローズ"""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """HTTPリクエストを実行（リトライ付き）

        Returns:
            レスポンスJSON

        Raises:
            SourceCommunicationError: 通信やレスポンスの解析に失敗した場合
        """
        session = await self._get_session()
        last_error: Exception | None = None

        for attempt in range(self.config.max_retries):
            try:
                async with session.request(method, url, params=params) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise SourceCommunicationError(
                            f"{self.client_name} returned HTTP {response.status}: "
                            f"{body[:200]}",
                            url=url,
                            status_code=response.status,
                        )
                    return await response.json(content_type=None)

            except SourceCommunicationError as e:
                if e.status_code is not None and e.status_code >= 500:
                    # サーバーエラーはリトライ
                    last_error = e
                    if attempt < self.config.max_retries - 1:
                        await asyncio.sleep(self.config.retry_delay * (attempt + 1))
                    continue
                raise
            except ValueError as e:
                raise SourceCommunicationError(
                    f"{self.client_name} returned invalid JSON: {e}",
                    url=url,
                    cause=e,
                ) from e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                logger.debug(
                    f"{self.client_name} request attempt {attempt + 1} failed: {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.retry_delay * (attempt + 1))
                continue

        raise SourceCommunicationError(
            f"Request to {self.client_name} failed after "
            f"{self.config.max_retries} attempts: {last_error}",
            url=url,
            cause=last_error,
        )

    @abstractmethod
    async def get_changed_documents(
        self,
        space_key: str,
        start_at: int,
        updated_after: datetime | None,
    ) -> ChangedDocumentsPage:
        """変更ドキュメントのページを取得"""
        ...
