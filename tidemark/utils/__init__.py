"""Utility helpers."""

from tidemark.utils.datetime_utils import (
    MILLISECOND_EPOCH_FORMAT,
    UNIX_EPOCH_FORMAT,
    DateTimeFormatter,
    format_iso_datetime,
    from_epoch_millis,
    parse_iso_datetime,
    parse_iso_datetime_minute_precise,
    round_to_minute,
    to_epoch_millis,
)
from tidemark.utils.paths import get_by_path

__all__ = [
    "MILLISECOND_EPOCH_FORMAT",
    "UNIX_EPOCH_FORMAT",
    "DateTimeFormatter",
    "format_iso_datetime",
    "from_epoch_millis",
    "parse_iso_datetime",
    "parse_iso_datetime_minute_precise",
    "round_to_minute",
    "to_epoch_millis",
    "get_by_path",
]
