# Date/Time Utilities
"""
tidemark.utils.datetime_utils - 日時の解析とフォーマット

リモートAPIのURLパラメータやインデックスの日時フィールドで使う
ISO 8601 文字列、エポック値、カスタムパターンを扱う。
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timezone

__all__ = [
    "MILLISECOND_EPOCH_FORMAT",
    "UNIX_EPOCH_FORMAT",
    "DateTimeFormatter",
    "parse_iso_datetime",
    "parse_iso_datetime_minute_precise",
    "format_iso_datetime",
    "round_to_minute",
    "from_epoch_millis",
    "to_epoch_millis",
]

MILLISECOND_EPOCH_FORMAT = "{milisecondEpoch}"
UNIX_EPOCH_FORMAT = "{unixEpoch}"

# パターントークン -> strftime ディレクティブ（長いトークンを先に評価）
_PATTERN_TOKENS: list[tuple[str, str]] = [
    ("yyyy", "%Y"),
    ("yy", "%y"),
    ("MM", "%m"),
    ("dd", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
    ("Z", "%z"),
]
_TOKEN_RE = re.compile(r"'[^']*'|SSS|" + "|".join(t for t, _ in _PATTERN_TOKENS))


def parse_iso_datetime(value: str | None) -> datetime | None:
    """ISO 8601 文字列を解析

    空文字列や None は None を返す。タイムゾーン指定が無い場合は UTC とみなす。

    Raises:
        ValueError: 解析できない場合
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def round_to_minute(value: datetime | None) -> datetime | None:
    """秒とミリ秒を切り捨て"""
    if value is None:
        return None
    return value.replace(second=0, microsecond=0)


def parse_iso_datetime_minute_precise(value: str | None) -> datetime | None:
    """ISO 8601 文字列を分単位の精度で解析"""
    return round_to_minute(parse_iso_datetime(value))


def format_iso_datetime(
    value: datetime | None, timespec: str = "milliseconds"
) -> str | None:
    """UTC の ISO 8601 文字列にフォーマット

    既定はミリ秒精度。ウォーターマークなど比較に使う値は
    ``timespec="microseconds"`` で精度を落とさずに保存する。
    """
    if value is None:
        return None
    return _as_utc(value).isoformat(timespec=timespec)


def from_epoch_millis(millis: int) -> datetime:
    """エポックミリ秒から UTC datetime を生成"""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def to_epoch_millis(value: datetime) -> int:
    """UTC datetime をエポックミリ秒に変換"""
    return int(round(_as_utc(value).timestamp() * 1000))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DateTimeFormatter:
    """日時フォーマッタ

    フォーマット指定に応じて日時を文字列に変換する。
    カスタムパターンの変換結果はインスタンスごとにキャッシュされる。

    フォーマット指定:
        - 空または None: ISO 8601 (UTC)
        - ``{milisecondEpoch}``: エポックミリ秒
        - ``{unixEpoch}``: エポック秒
        - ``%`` を含む文字列: strftime パターン
        - それ以外: ``yyyy-MM-dd'T'HH:mm:ss`` 形式のパターン

    Example:
        >>> formatter = DateTimeFormatter()
        >>> formatter.format(dt, "yyyy-MM-dd HH:mm")
        '2024-03-01 12:30'
    """

    def __init__(self) -> None:
        self._cache: dict[str, Callable[[datetime], str]] = {}

    def format(self, value: datetime | None, fmt: str | None = None) -> str | None:
        """日時をフォーマット"""
        if value is None:
            return None

        if fmt is None or not fmt.strip():
            return format_iso_datetime(value)
        if fmt == MILLISECOND_EPOCH_FORMAT:
            return str(to_epoch_millis(value))
        if fmt == UNIX_EPOCH_FORMAT:
            return str(to_epoch_millis(value) // 1000)

        formatter = self._cache.get(fmt)
        if formatter is None:
            formatter = self._compile(fmt)
            self._cache[fmt] = formatter
        return formatter(_as_utc(value))

    @property
    def cached_patterns(self) -> list[str]:
        """キャッシュ済みパターン"""
        return list(self._cache)

    @staticmethod
    def _compile(fmt: str) -> Callable[[datetime], str]:
        """パターンをフォーマット関数に変換"""
        if "%" in fmt:
            return lambda value: value.strftime(fmt)

        parts: list[str | None] = []
        pos = 0
        for match in _TOKEN_RE.finditer(fmt):
            parts.append(fmt[pos:match.start()].replace("%", "%%"))
            token = match.group(0)
            if token.startswith("'"):
                parts.append(token[1:-1].replace("%", "%%") or "'")
            elif token == "SSS":
                parts.append(None)
            else:
                parts.append(dict(_PATTERN_TOKENS)[token])
            pos = match.end()
        parts.append(fmt[pos:].replace("%", "%%"))

        def _format(value: datetime) -> str:
            millis = f"{value.microsecond // 1000:03d}"
            return "".join(
                millis if part is None else value.strftime(part) if part else ""
                for part in parts
            )

        return _format
