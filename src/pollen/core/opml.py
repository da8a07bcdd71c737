"""OPML 导入导出."""

from datetime import UTC, datetime

from lxml import etree

from pollen.errors import ParseError
from pollen.models.feed import Feed
from pollen.utils.html_parser import decode_text
from pollen.utils.ids import derive_id

PRODUCT_NAME = "pollen"

_PARSER = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)


def _parse(opml: str | bytes) -> etree._Element | None:
    if isinstance(opml, str):
        opml = opml.encode("utf-8")
    try:
        root = etree.fromstring(opml.strip(), parser=_PARSER)
    except etree.XMLSyntaxError:
        return None
    if root is None or root.tag != "opml":
        return None
    return root


def is_opml_xml(opml: str | bytes) -> bool:
    """判断内容是否为 OPML 文档."""
    return _parse(opml) is not None


def _collect(node: etree._Element, feeds: list[Feed]) -> None:
    for outline in node.iterchildren("outline"):
        xml_url = (outline.get("xmlUrl") or "").strip()
        if (outline.get("type") or "").lower() == "rss" and xml_url:
            feeds.append(
                Feed(
                    id=derive_id(xml_url),
                    url=xml_url,
                    title=decode_text(outline.get("title") or outline.get("text")) or xml_url,
                    description=decode_text(outline.get("description")),
                    html_url=outline.get("htmlUrl") or None,
                )
            )
        # 文件夹类 outline 可以嵌套
        _collect(outline, feeds)


def parse_opml(opml: str | bytes) -> list[Feed]:
    """
    解析 OPML，递归收集所有 ``type="rss"`` 的 outline.

    Raises:
        ParseError: 内容不是 OPML
    """
    root = _parse(opml)
    if root is None:
        msg = "无效的 OPML 文件"
        raise ParseError(msg)

    body = root.find("body")
    feeds: list[Feed] = []
    if body is not None:
        _collect(body, feeds)
    return feeds


def build_opml(
    feeds: list[Feed],
    title: str = "Subscriptions",
    date_created: datetime | None = None,
) -> str:
    """生成 OPML 2.0 文档，订阅源按标题排序."""
    date_created = date_created or datetime.now(UTC)

    root = etree.Element("opml", version="2.0")
    head = etree.SubElement(root, "head")
    etree.SubElement(head, "title").text = title
    etree.SubElement(head, "dateCreated").text = date_created.isoformat()

    body = etree.SubElement(root, "body")
    for feed in sorted(feeds, key=lambda f: f.title or ""):
        text = (feed.title or "").strip() or feed.url
        outline = etree.SubElement(body, "outline")
        outline.set("text", text)
        outline.set("title", text)
        outline.set("type", "rss")
        outline.set("xmlUrl", feed.url)
        if feed.html_url:
            outline.set("htmlUrl", feed.html_url)
        if feed.description:
            outline.set("description", feed.description)

    return etree.tostring(
        root, xml_declaration=True, encoding="UTF-8", pretty_print=True
    ).decode("utf-8")


def build_export_filename(now: datetime | None = None) -> str:
    """导出文件名：``pollen-subscriptions-YYYYMMDD.opml``."""
    now = now or datetime.now()
    return f"{PRODUCT_NAME}-subscriptions-{now:%Y%m%d}.opml"
