"""Dot-notation access into nested JSON data."""

from __future__ import annotations

from typing import Any


def get_by_path(data: Any, path: str | None) -> Any:
    """ドット区切りのパスで値を取得

    途中で辞書でない値や欠落に当たった場合は None を返す。
    パスが空の場合は ``data`` 自身を返す。

    Example:
        >>> get_by_path({"fields": {"updated": 10}}, "fields.updated")
        10
    """
    if not path:
        return data
    current = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current
