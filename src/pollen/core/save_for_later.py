"""稍后阅读：保存任意网页为独立文章."""

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from pollen.models.article import Article
from pollen.reader.base import ArticlesApi
from pollen.utils.html_parser import extract_page_metadata
from pollen.utils.ids import derive_id
from pollen.utils.timeutil import now_ms, to_iso

logger = logging.getLogger(__name__)

METADATA_TIMEOUT_SECONDS = 5.0


@dataclass
class SaveResult:
    """保存结果."""

    status: str  # saved | already-saved
    id: str


def saved_article_id(url: str) -> str:
    """稍后阅读文章的 ID 由 URL 派生."""
    return derive_id(url)


def build_saved_article(url: str) -> Article:
    """构造未补全元数据的文章：标题用 URL，来源用主机名."""
    hostname = urlparse(url).hostname or url
    return Article(
        id=saved_article_id(url),
        feed_id=None,
        title=url,
        link=url,
        source=hostname,
        published_at=to_iso(now_ms()),
        read=False,
        saved=True,
    )


def apply_metadata(article: Article, metadata: dict[str, str | None]) -> Article:
    """用页面元数据覆盖占位字段."""
    return article.model_copy(
        update={
            "title": metadata.get("title") or article.title,
            "source": metadata.get("source") or article.source,
            "description": metadata.get("description") or article.description,
            "thumbnail": metadata.get("thumbnail") or article.thumbnail,
            "published_at": metadata.get("published_at") or article.published_at,
        }
    )


class SaveForLater:
    """
    立即保存，随后在后台尽力补全标题、摘要、缩略图等元数据.

    补全失败不影响保存结果。
    """

    def __init__(
        self,
        articles: ArticlesApi,
        client: httpx.AsyncClient,
        timeout: float = METADATA_TIMEOUT_SECONDS,
    ) -> None:
        self.articles = articles
        self._client = client
        self._timeout = timeout
        self._pending: set[asyncio.Task[None]] = set()

    async def save(self, url: str) -> SaveResult:
        """保存网页."""
        article_id = saved_article_id(url)
        existing = await self.articles.get(article_id)
        if existing is not None:
            if existing.saved:
                return SaveResult(status="already-saved", id=article_id)
            await self.articles.set_saved(article_id, True)
            return SaveResult(status="saved", id=article_id)

        article = build_saved_article(url)
        await self.articles.upsert([article])

        task = asyncio.create_task(self._enrich(article))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return SaveResult(status="saved", id=article_id)

    async def _enrich(self, article: Article) -> None:
        try:
            metadata = await asyncio.wait_for(
                self._fetch_metadata(article.link), timeout=self._timeout
            )
            if any(metadata.values()):
                await self.articles.upsert([apply_metadata(article, metadata)])
        except Exception as e:
            logger.debug(f"页面元数据补全失败 {article.link}: {e}")

    async def _fetch_metadata(self, url: str) -> dict[str, str | None]:
        response = await self._client.get(url, follow_redirects=True)
        if response.status_code >= 400:
            return {}
        if "html" not in response.headers.get("content-type", "text/html"):
            return {}
        return extract_page_metadata(response.text, str(response.url))

    async def wait_pending(self) -> None:
        """等待所有补全任务结束."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
