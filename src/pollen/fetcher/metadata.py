"""文章页面元数据远程查找（尽力而为）."""

import asyncio
import logging
from dataclasses import dataclass

import httpx

from pollen.utils.html_parser import extract_head_metadata

logger = logging.getLogger(__name__)

METADATA_TIMEOUT_SECONDS = 5.0


@dataclass
class MetadataBudget:
    """单次刷新允许的远程元数据请求次数."""

    remaining: int = 200

    def consume(self) -> bool:
        """消耗一次额度，额度用尽返回 False."""
        if self.remaining <= 0:
            return False
        self.remaining -= 1
        return True


@dataclass
class PageMetadata:
    """从文章页面补全的字段."""

    thumbnail: str | None = None
    description: str | None = None
    published_at: str | None = None


class PageMetadataResolver:
    """
    从文章页面补全缩略图、摘要和发布时间.

    先 HEAD 请求确认是 HTML，再 GET 页面解析 JSON-LD 和 og 标签。
    所有失败（网络错误、超时、非 HTML、无标签）都返回 None，
    不向调用方抛出异常。
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = METADATA_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._timeout = timeout

    async def lookup(
        self, link: str | None, budget: MetadataBudget | None = None
    ) -> PageMetadata | None:
        """查找页面元数据，找不到返回 None."""
        if not link or not link.startswith(("http://", "https://")):
            return None
        if budget is not None and not budget.consume():
            return None

        try:
            return await asyncio.wait_for(self._lookup(link), timeout=self._timeout)
        except Exception as e:
            logger.debug(f"页面元数据查找失败 {link}: {e}")
            return None

    async def _lookup(self, link: str) -> PageMetadata | None:
        head = await self._client.head(link, follow_redirects=True)
        if head.status_code >= 400:
            return None
        content_type = head.headers.get("content-type", "")
        if "text/html" not in content_type:
            return None

        response = await self._client.get(link, follow_redirects=True)
        if response.status_code >= 400:
            return None

        loop = asyncio.get_running_loop()
        found = await loop.run_in_executor(
            None, extract_head_metadata, response.text, str(response.url)
        )
        if not any(found.values()):
            return None
        return PageMetadata(
            thumbnail=found.get("thumbnail"),
            description=found.get("description"),
            published_at=found.get("published_at"),
        )
