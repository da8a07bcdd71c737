"""时间解析工具."""

import time
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime


def now_ms() -> int:
    """当前时间（毫秒时间戳）."""
    return int(time.time() * 1000)


def parse_datetime(value: str | None) -> datetime | None:
    """
    解析订阅源中的日期字符串.

    支持 RFC 2822（RSS 常见）和 ISO 8601（Atom 常见），
    无时区信息时按 UTC 处理，无法解析返回 None。
    """
    if not value:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def to_timestamp(value: str | None) -> int:
    """日期字符串转毫秒时间戳，无法解析返回 0."""
    dt = parse_datetime(value)
    if dt is None:
        return 0
    return round(dt.timestamp() * 1000)


def to_iso(ts_ms: int | None) -> str | None:
    """毫秒时间戳转 ISO 字符串."""
    if not ts_ms:
        return None
    dt = datetime.fromtimestamp(ts_ms / 1000, tz=UTC)
    return dt.isoformat().replace("+00:00", "Z")
