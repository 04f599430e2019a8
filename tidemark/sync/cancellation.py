"""Cancellation signal for sync passes."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """協調的キャンセルのためのトークン

    同期エンジンは各ブロッキング呼び出しの前と、ドキュメントやヒットの
    処理ごとに ``is_cancelled`` を確認する。一度キャンセルされると戻らない。

    Example:
        >>> token = CancellationToken()
        >>> indexer = SpaceIndexer(..., cancellation=token)
        >>> token.cancel("shutdown")
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        """キャンセルを要求"""
        if not self._cancelled:
            logger.info(f"Cancellation requested: {reason or 'no reason given'}")
            self._cancelled = True
            self.reason = reason
