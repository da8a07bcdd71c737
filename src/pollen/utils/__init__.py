"""工具函数."""

from pollen.utils.collections import chunk, dedupe_by_id
from pollen.utils.ids import derive_id
from pollen.utils.timeutil import now_ms, parse_datetime, to_iso, to_timestamp

__all__ = [
    "chunk",
    "dedupe_by_id",
    "derive_id",
    "now_ms",
    "parse_datetime",
    "to_iso",
    "to_timestamp",
]
