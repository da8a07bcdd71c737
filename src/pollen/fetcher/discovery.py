"""订阅源发现：从用户输入的地址找到 RSS/Atom 订阅源."""

import logging
import re
from dataclasses import dataclass, field

import httpx
from bs4 import BeautifulSoup

from pollen.core.opml import is_opml_xml
from pollen.errors import FetchTimeoutError, NetworkError
from pollen.utils.html_parser import to_absolute_url

logger = logging.getLogger(__name__)

FEED_MIME_TYPES = {"application/rss+xml", "application/atom+xml"}
GENERIC_XML_MIME_TYPES = {"application/xml", "text/xml"}

_FEED_ROOT_RE = re.compile(r"<(rss|feed|rdf:rdf)(\s|>)", re.IGNORECASE)


@dataclass
class FeedCandidate:
    """页面声明的订阅源."""

    url: str
    title: str | None = None
    kind: str = "unknown"  # rss | atom | unknown


@dataclass
class DiscoveryResult:
    """
    发现结果.

    ``direct_url`` 表示地址本身就是订阅源；``opml_url`` 表示地址指向
    OPML 文件；否则 ``candidates`` 为页面 <link rel="alternate"> 中的订阅源。
    """

    direct_url: str | None = None
    direct_kind: str = "unknown"
    opml_url: str | None = None
    candidates: list[FeedCandidate] = field(default_factory=list)


def _mime(value: str | None) -> str:
    return (value or "").split(";")[0].strip().lower()


def _kind_from_mime(value: str | None) -> str:
    mime = _mime(value)
    if mime == "application/rss+xml":
        return "rss"
    if mime == "application/atom+xml":
        return "atom"
    return "unknown"


def _kind_from_body(body: str) -> str:
    if re.search(r"<feed(\s|>)", body, re.IGNORECASE):
        return "atom"
    if re.search(r"<(rss|rdf:rdf)(\s|>)", body, re.IGNORECASE):
        return "rss"
    return "unknown"


def _looks_like_feed(body: str) -> bool:
    return bool(_FEED_ROOT_RE.search(body)) or body.lstrip().lower().startswith("<?xml")


def extract_feed_links(page_html: str, base_url: str) -> list[FeedCandidate]:
    """提取页面中 type 为 RSS/Atom 的 alternate 链接，按出现顺序去重."""
    soup = BeautifulSoup(page_html, "lxml")
    candidates: list[FeedCandidate] = []
    seen: set[str] = set()

    for link in soup.find_all("link"):
        rel = link.get("rel")
        # bs4 把 rel 解析为列表
        if rel and "alternate" not in [r.lower() for r in rel]:
            continue
        mime = _mime(link.get("type"))
        if mime not in FEED_MIME_TYPES:
            continue
        href = to_absolute_url(base_url, (link.get("href") or "").strip())
        if not href or href in seen:
            continue
        seen.add(href)
        title = (link.get("title") or "").strip()
        candidates.append(
            FeedCandidate(url=href, title=title or None, kind=_kind_from_mime(mime))
        )

    return candidates


class FeedDiscovery:
    """按地址内容判断订阅源."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def discover(self, url: str) -> DiscoveryResult:
        """
        发现订阅源.

        先用 HEAD 检查 Content-Type，明确是 RSS/Atom 时直接返回；否则
        GET 页面，依次判断 OPML、订阅源内容和 HTML 页面中的 alternate 链接。

        Raises:
            NetworkError: 页面无法加载
        """
        try:
            head = await self._client.head(url, follow_redirects=True)
            content_type = head.headers.get("content-type")
            if head.status_code < 400 and _mime(content_type) in FEED_MIME_TYPES:
                return DiscoveryResult(direct_url=url, direct_kind=_kind_from_mime(content_type))
        except httpx.HTTPError as e:
            logger.debug(f"HEAD 请求失败，改用 GET: {url} ({e})")

        try:
            response = await self._client.get(url, follow_redirects=True)
        except httpx.TimeoutException as e:
            msg = f"加载超时: {url}"
            raise FetchTimeoutError(msg) from e
        except httpx.HTTPError as e:
            msg = f"无法加载地址: {url} ({e})"
            raise NetworkError(msg) from e
        if response.status_code >= 400:
            msg = f"无法加载地址: {url} ({response.status_code})"
            raise NetworkError(msg)

        final_url = str(response.url)
        content_type = response.headers.get("content-type")
        body = response.text

        if is_opml_xml(body):
            return DiscoveryResult(opml_url=final_url)
        mime = _mime(content_type)
        if mime in FEED_MIME_TYPES or mime in GENERIC_XML_MIME_TYPES:
            return DiscoveryResult(direct_url=final_url, direct_kind=_kind_from_mime(mime))
        if _looks_like_feed(body):
            return DiscoveryResult(direct_url=final_url, direct_kind=_kind_from_body(body))

        return DiscoveryResult(candidates=extract_feed_links(body, final_url))
