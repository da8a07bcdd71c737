"""订阅源新鲜度策略：由 HTTP 缓存头推导下次允许抓取的时间."""

import re
from collections.abc import Mapping

from pollen.utils.timeutil import to_timestamp

DEFAULT_FRESHNESS_MS = 5 * 60 * 1000

_PERIOD_SECONDS = {
    "hourly": 60 * 60,
    "daily": 24 * 60 * 60,
    "weekly": 7 * 24 * 60 * 60,
    "monthly": 30 * 24 * 60 * 60,
    "yearly": 365 * 24 * 60 * 60,
}

_DELIMITER_RE = re.compile(r"[,;]")


def parse_cache_control(header: str | None) -> int | None:
    """
    解析 Cache-Control 中的 max-age（缺失时用 s-maxage）.

    指令按逗号或分号分隔；值必须是纯整数，否则视为无指令。

    Examples:
        >>> parse_cache_control("private, must-revalidate, max-age=900")
        900
        >>> parse_cache_control("s-maxage=600, max-age=120")
        120
        >>> parse_cache_control("private|max-age=900") is None
        True
    """
    if not header:
        return None

    directives: dict[str, str] = {}
    for part in _DELIMITER_RE.split(header):
        name, sep, value = part.strip().partition("=")
        if sep:
            directives.setdefault(name.strip().lower(), value.strip().strip('"'))

    for name in ("max-age", "s-maxage"):
        value = directives.get(name)
        if value is None:
            continue
        if not value.isdigit():
            return None
        return int(value)
    return None


def syndication_interval(period: str | None, frequency: str | int | None = None) -> int | None:
    """
    由 sy:updatePeriod / sy:updateFrequency 计算更新间隔（秒）.

    frequency 表示每个周期更新几次，缺省为 1。
    """
    if not period:
        return None
    seconds = _PERIOD_SECONDS.get(period.strip().lower())
    if seconds is None:
        return None

    try:
        times = int(str(frequency).strip()) if frequency is not None else 1
    except ValueError:
        times = 1
    if times <= 0:
        times = 1
    return seconds // times


def _header(headers: Mapping[str, str] | None, name: str) -> str | None:
    if not headers:
        return None
    # httpx.Headers 本身大小写不敏感，普通 dict 需要逐个比较
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def compute_expires_ts(
    headers: Mapping[str, str] | None,
    now: int,
    update_interval: int | None = None,
) -> int:
    """
    计算下次允许抓取的时间（毫秒）.

    优先使用 Cache-Control 的 max-age/s-maxage，其次是未来的 Expires 头，
    都没有时默认 5 分钟。订阅源声明的更新间隔更长时以其为准。
    """
    window_ms: int | None = None

    max_age = parse_cache_control(_header(headers, "cache-control"))
    if max_age is not None:
        window_ms = max_age * 1000
    else:
        expires_at = to_timestamp(_header(headers, "expires"))
        if expires_at > now:
            window_ms = expires_at - now

    if window_ms is None:
        window_ms = DEFAULT_FRESHNESS_MS

    if update_interval and update_interval * 1000 > window_ms:
        window_ms = update_interval * 1000

    return now + window_ms


def next_expiry_after_not_modified(
    previous_expires_ts: int | None,
    headers: Mapping[str, str] | None,
    now: int,
    update_interval: int | None = None,
) -> int:
    """
    处理 304 响应后的过期时间.

    原过期时间已过（或不存在）时按同一策略向后推，避免对没有新内容的
    服务器反复请求；尚未过期则保持不变。
    """
    if previous_expires_ts and previous_expires_ts > now:
        return previous_expires_ts
    return compute_expires_ts(headers, now, update_interval)
