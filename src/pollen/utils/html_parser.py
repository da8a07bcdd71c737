"""HTML 解析工具."""

import html
import json
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup

_IMG_SRC_RE = re.compile(r"<img[^>]+src=[\"']([^\"'>]+)[\"']", re.IGNORECASE)


def decode_text(value: str | None) -> str | None:
    """解码 HTML 实体并去除首尾空白，空字符串返回 None."""
    if value is None:
        return None
    decoded = html.unescape(value).strip()
    return decoded or None


def html_to_text(markup: str | None) -> str:
    """
    将 HTML 转换为纯文本.

    Args:
        markup: HTML 内容

    Returns:
        提取的纯文本内容（单行，空白已合并）
    """
    if not markup:
        return ""

    trimmed = markup.strip()
    decoded = html.unescape(trimmed)
    if "<" not in decoded:
        return re.sub(r"\s+", " ", decoded).strip()

    soup = BeautifulSoup(decoded, "lxml")

    # 移除 script 和 style 标签
    for element in soup(["script", "style"]):
        element.decompose()

    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


def extract_first_image(markup: str | None) -> str | None:
    """
    提取 HTML 中的第一张图片 URL.

    Args:
        markup: HTML 内容

    Returns:
        图片 URL 或 None
    """
    if not markup:
        return None

    match = _IMG_SRC_RE.search(markup)
    if match:
        return match.group(1)
    return None


def extract_og_image(page_html: str, base_url: str) -> str | None:
    """从页面 <head> 中提取 og:image（或 name=image）并转为绝对 URL."""
    if not page_html:
        return None

    return _og_image(BeautifulSoup(page_html, "lxml"), base_url)


def _og_image(soup: BeautifulSoup, base_url: str) -> str | None:
    tag = soup.find("meta", attrs={"property": "og:image"}) or soup.find(
        "meta", attrs={"name": "image"}
    )
    if tag is None:
        return None

    content = tag.get("content")
    if isinstance(content, list):
        content = content[0] if content else None
    if not content:
        return None
    return to_absolute_url(base_url, content.strip())


def to_absolute_url(base_url: str, maybe_url: str | None) -> str | None:
    """相对 URL 转绝对 URL."""
    if not maybe_url:
        return None
    try:
        return urljoin(base_url, maybe_url)
    except ValueError:
        return maybe_url


def _meta_content(soup: BeautifulSoup, *selectors: tuple[str, str]) -> str | None:
    for attr, value in selectors:
        tag = soup.find("meta", attrs={attr: value})
        if tag is None:
            continue
        content = tag.get("content")
        if isinstance(content, list):
            content = content[0] if content else None
        if content and content.strip():
            return content.strip()
    return None


def extract_page_metadata(page_html: str, base_url: str) -> dict[str, str | None]:
    """
    提取页面元数据，用于“稍后阅读”补全.

    Returns:
        包含 title、description、thumbnail、source、published_at 的字典，
        缺失的字段为 None
    """
    if not page_html:
        return {}

    soup = BeautifulSoup(page_html, "lxml")
    title = _meta_content(soup, ("property", "og:title"), ("name", "twitter:title"))
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    return {
        "title": decode_text(title),
        "description": decode_text(
            _meta_content(
                soup,
                ("property", "og:description"),
                ("name", "description"),
            )
        ),
        "thumbnail": extract_og_image(page_html, base_url),
        "source": decode_text(_meta_content(soup, ("property", "og:site_name"))),
        "published_at": _meta_content(soup, ("property", "article:published_time")),
    }


_JSON_LD_TYPES = {"Article", "NewsArticle", "BlogPosting"}


def _json_ld_metadata(soup: BeautifulSoup, base_url: str) -> dict[str, str | None]:
    """取第一个 Article/NewsArticle/BlogPosting 类型的 JSON-LD 对象."""
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue

        for candidate in data if isinstance(data, list) else [data]:
            if not isinstance(candidate, dict):
                continue
            types = candidate.get("@type")
            if not isinstance(types, list):
                types = [types]
            if not any(isinstance(t, str) and t in _JSON_LD_TYPES for t in types):
                continue

            image = candidate.get("image") or candidate.get("thumbnailUrl")
            if isinstance(image, list):
                image = image[0] if image else None
            if isinstance(image, dict):
                image = image.get("url")
            description = candidate.get("description")
            if not isinstance(description, str):
                description = None
            published = candidate.get("datePublished") or candidate.get("dateModified")
            return {
                "thumbnail": to_absolute_url(base_url, image) if isinstance(image, str) else None,
                "description": html_to_text(description) or None,
                "published_at": published if isinstance(published, str) else None,
            }
    return {}


def extract_head_metadata(page_html: str, base_url: str) -> dict[str, str | None]:
    """
    提取文章页面的缩略图、摘要和发布时间.

    JSON-LD 优先，其次 og/meta 标签。

    Returns:
        包含 thumbnail、description、published_at 的字典，缺失的字段为 None
    """
    if not page_html:
        return {}

    soup = BeautifulSoup(page_html, "lxml")
    ld = _json_ld_metadata(soup, base_url)
    description = _meta_content(soup, ("property", "og:description"), ("name", "description"))
    og = {
        "thumbnail": _og_image(soup, base_url),
        "description": html_to_text(description) or None,
        "published_at": _meta_content(
            soup, ("property", "article:published_time"), ("name", "date")
        ),
    }
    return {key: ld.get(key) or og[key] for key in og}
