"""RSS/Atom 解析，统一转换为 Feed + Article."""

import logging
from dataclasses import dataclass, field

from lxml import etree

from pollen.core.freshness import syndication_interval
from pollen.errors import ParseError
from pollen.models.article import Article
from pollen.models.feed import Feed
from pollen.utils.collections import dedupe_by_id
from pollen.utils.html_parser import decode_text, extract_first_image
from pollen.utils.ids import derive_id
from pollen.utils.timeutil import now_ms

logger = logging.getLogger(__name__)

DEFAULT_FEED_TITLE = "RSS Feed"
DEFAULT_ARTICLE_TITLE = "Untitled"

_XML_PARSER = etree.XMLParser(
    recover=True,
    resolve_entities=False,
    no_network=True,
    remove_comments=True,
    huge_tree=True,
)


@dataclass
class ParsedFeed:
    """解析结果."""

    feed: Feed
    articles: list[Article] = field(default_factory=list)
    update_interval: int | None = None  # sy:updatePeriod 推导的秒数


# 命名空间 URI → 规范前缀，空字符串按无命名空间处理
_NAMESPACES = {
    "http://www.w3.org/2005/Atom": "atom",
    "http://purl.org/atom/ns#": "atom",
    "http://search.yahoo.com/mrss/": "media",
    "http://search.yahoo.com/mrss": "media",
    "http://purl.org/rss/1.0/modules/content/": "content",
    "http://purl.org/dc/elements/1.1/": "dc",
    "http://purl.org/rss/1.0/modules/syndication/": "sy",
    "http://www.w3.org/1999/02/22-rdf-syntax-ns#": "rdf",
    "http://purl.org/rss/1.0/": "",
    "http://my.netscape.com/rdf/simple/0.9/": "",
    "http://backend.userland.com/rss2": "",
    "http://blogs.law.harvard.edu/tech/rss": "",
}


def _local(tag: object) -> str:
    """去掉命名空间的标签名."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _name(element: etree._Element) -> str:
    """
    规范化标签名，如 media:content.

    前缀由命名空间 URI 决定，与文档中实际使用的前缀无关。
    未声明的前缀在 recover 模式下保留为字面量标签名。
    """
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    if not tag.startswith("{"):
        return tag
    uri, local = tag[1:].split("}", 1)
    prefix = _NAMESPACES.get(uri)
    if prefix is None:
        return tag
    return f"{prefix}:{local}" if prefix else local


def _children(element: etree._Element, name: str) -> list[etree._Element]:
    return [child for child in element if _name(child) == name]


def _child(element: etree._Element, name: str) -> etree._Element | None:
    for child in element:
        if _name(child) == name:
            return child
    return None


def _inner_text(element: etree._Element | None) -> str | None:
    """
    元素文本.

    HTML 内容可能以转义文本、CDATA 或内联 XHTML 出现，
    有子元素时序列化子节点。
    """
    if element is None:
        return None
    if len(element):
        parts = [element.text or ""]
        parts.extend(
            etree.tostring(child, encoding="unicode", with_tail=True) for child in element
        )
        return "".join(parts).strip() or None
    text = element.text
    if text is None:
        return None
    return text.strip() or None


def _child_text(element: etree._Element, name: str) -> str | None:
    return _inner_text(_child(element, name))


def _first_attr(elements: list[etree._Element], attr: str) -> str | None:
    for element in elements:
        value = element.get(attr)
        if value and value.strip():
            return value.strip()
    return None


def _parse_document(content: bytes | str) -> etree._Element:
    """解析 XML，结构无法识别时抛出 ParseError."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    content = content.strip()
    if not content:
        msg = "订阅源内容为空"
        raise ParseError(msg)

    try:
        root = etree.fromstring(content, parser=_XML_PARSER)
    except etree.XMLSyntaxError as e:
        msg = f"订阅源 XML 无法解析: {e}"
        raise ParseError(msg) from e

    if root is None or _local(root.tag) not in {"rss", "feed", "RDF", "channel"}:
        msg = "不是 RSS/Atom 文档"
        raise ParseError(msg)
    return root


def _media_url(item: etree._Element) -> str | None:
    """enclosure → media:content → media:thumbnail."""
    return (
        _first_attr(_children(item, "enclosure"), "url")
        or _first_attr(_children(item, "media:content"), "url")
        or _first_attr(_children(item, "media:thumbnail"), "url")
    )


def _resolve_raw_id(*candidates: str | None, index: int) -> str:
    for candidate in candidates:
        if candidate:
            return candidate
    return f"{now_ms()}-{index}"


def _update_interval(channel: etree._Element) -> int | None:
    period = _child_text(channel, "sy:updatePeriod")
    frequency = _child_text(channel, "sy:updateFrequency")
    return syndication_interval(period, frequency)


def _alternate_href(links: list[etree._Element]) -> str | None:
    for link in links:
        rel = link.get("rel", "alternate")
        if rel == "alternate" and link.get("href"):
            return link.get("href")
    return None


def _parse_atom(root: etree._Element, url: str) -> ParsedFeed:
    # 没有声明 Atom 命名空间的文档按裸标签名匹配
    a = "atom:" if _name(root) == "atom:feed" else ""

    title = decode_text(_child_text(root, f"{a}title")) or DEFAULT_FEED_TITLE

    feed = Feed(
        id=derive_id(url),
        title=title,
        url=url,
        html_url=_alternate_href(_children(root, f"{a}link")),
        description=decode_text(_child_text(root, f"{a}subtitle")),
        image=_child_text(root, f"{a}icon") or _child_text(root, f"{a}logo"),
        last_updated=_child_text(root, f"{a}updated"),
    )

    articles: list[Article] = []
    for index, entry in enumerate(_children(root, f"{a}entry")):
        links = _children(entry, f"{a}link")
        link = _alternate_href(links) or _first_attr(links, "href")

        entry_title = decode_text(_child_text(entry, f"{a}title"))
        raw_id = _resolve_raw_id(_child_text(entry, f"{a}id"), link, entry_title, index=index)
        content = _child_text(entry, f"{a}content")
        summary = _child_text(entry, f"{a}summary")
        updated = _child_text(entry, f"{a}updated")

        articles.append(
            Article(
                id=derive_id(raw_id),
                feed_id=feed.id,
                title=entry_title or DEFAULT_ARTICLE_TITLE,
                link=link or url,
                source=title,
                published_at=_child_text(entry, f"{a}published") or updated,
                updated_at=updated,
                description=decode_text(summary),
                content=content or summary,
                thumbnail=_media_url(entry) or extract_first_image(content or summary),
            )
        )

    return ParsedFeed(feed=feed, articles=dedupe_by_id(articles))


def _parse_rss(root: etree._Element, url: str) -> ParsedFeed:
    channel = root if _local(root.tag) == "channel" else _child(root, "channel")
    if channel is None:
        msg = "RSS 文档缺少 channel"
        raise ParseError(msg)

    title = decode_text(_child_text(channel, "title")) or DEFAULT_FEED_TITLE
    image = _child(channel, "image")

    feed = Feed(
        id=derive_id(url),
        title=title,
        url=url,
        html_url=_child_text(channel, "link"),
        description=decode_text(_child_text(channel, "description")),
        image=_child_text(image, "url") if image is not None else None,
        last_updated=_child_text(channel, "lastBuildDate") or _child_text(channel, "pubDate"),
    )

    # RSS 1.0 (RDF) 的 item 与 channel 同级
    items = _children(channel, "item") or _children(root, "item")

    articles: list[Article] = []
    for index, item in enumerate(items):
        link = _child_text(item, "link")
        item_title = decode_text(_child_text(item, "title"))
        raw_id = _resolve_raw_id(_child_text(item, "guid"), link, item_title, index=index)
        description = _child_text(item, "description")
        content = _child_text(item, "content:encoded") or description

        articles.append(
            Article(
                id=derive_id(raw_id),
                feed_id=feed.id,
                title=item_title or DEFAULT_ARTICLE_TITLE,
                link=link or url,
                source=title,
                published_at=_child_text(item, "pubDate") or _child_text(item, "dc:date"),
                updated_at=None,
                description=decode_text(description),
                content=content,
                thumbnail=_media_url(item) or extract_first_image(content),
            )
        )

    return ParsedFeed(
        feed=feed,
        articles=dedupe_by_id(articles),
        update_interval=_update_interval(channel),
    )


def parse_feed(content: bytes | str, url: str) -> ParsedFeed:
    """
    解析 RSS/Atom 文档.

    根元素为 ``feed`` 时按 Atom 处理，否则按 RSS 处理。缩略图只使用
    文档内的线索（enclosure、media、正文首图），远程查找由
    :class:`~pollen.fetcher.metadata.PageMetadataResolver` 完成。

    Args:
        content: 原始订阅源内容
        url: 订阅源 URL（用于生成 Feed ID 和缺省链接）

    Returns:
        ParsedFeed: 订阅源和按 ID 去重的文章列表

    Raises:
        ParseError: 文档结构无法解析
    """
    root = _parse_document(content)
    if _local(root.tag) == "feed":
        parsed = _parse_atom(root, url)
    else:
        parsed = _parse_rss(root, url)
    logger.debug(f"解析 {url}: {len(parsed.articles)} 篇文章")
    return parsed
