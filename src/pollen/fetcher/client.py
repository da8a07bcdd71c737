"""订阅源抓取：条件请求 + 解析 + 页面元数据补全 + 新鲜度."""

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from pollen.config import Settings, get_settings
from pollen.core.freshness import compute_expires_ts, next_expiry_after_not_modified
from pollen.errors import FetchTimeoutError, NetworkError
from pollen.fetcher.discovery import DiscoveryResult, FeedDiscovery
from pollen.fetcher.metadata import MetadataBudget, PageMetadataResolver
from pollen.fetcher.parser import parse_feed
from pollen.models.article import Article, article_timestamp
from pollen.models.feed import Feed
from pollen.utils.timeutil import now_ms

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """单个订阅源的抓取结果."""

    feed: Feed
    articles: list[Article] = field(default_factory=list)
    not_modified: bool = False


def _copy_feed(feed: Feed, **changes: object) -> Feed:
    data = feed.model_dump()
    data.update(changes)
    return Feed(**data)


class FeedFetcher:
    """订阅源抓取客户端."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.feed_timeout_seconds,
            headers={"User-Agent": settings.user_agent},
            follow_redirects=True,
        )
        self.metadata = PageMetadataResolver(
            self._client, timeout=settings.metadata_timeout_seconds
        )
        self.discovery = FeedDiscovery(self._client)

    async def close(self) -> None:
        """关闭客户端."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "FeedFetcher":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def fetch(
        self,
        url: str,
        *,
        existing: Feed | None = None,
        cutoff_ts: int = 0,
        budget: MetadataBudget | None = None,
    ) -> FetchResult:
        """
        抓取并解析订阅源.

        Args:
            url: 订阅源 URL
            existing: 本地已有的订阅源（提供条件请求头和保留字段）
            cutoff_ts: 早于等于该时间的文章不做远程元数据查找
            budget: 远程元数据请求额度

        Returns:
            FetchResult: 304 时 ``not_modified`` 为真且文章为空

        Raises:
            NetworkError: 请求失败或超时
            ParseError: 文档无法解析
        """
        headers: dict[str, str] = {}
        if existing is not None:
            if existing.etag:
                headers["If-None-Match"] = existing.etag
            if existing.last_modified:
                headers["If-Modified-Since"] = existing.last_modified

        try:
            response = await self._client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            msg = f"抓取超时: {url}"
            raise FetchTimeoutError(msg) from e
        except httpx.HTTPError as e:
            msg = f"抓取失败: {url} ({e})"
            raise NetworkError(msg) from e

        now = now_ms()

        if response.status_code == 304 and existing is not None:
            expires_ts = next_expiry_after_not_modified(
                existing.expires_ts, response.headers, now
            )
            logger.debug(f"{url} 未修改，下次抓取时间 {expires_ts}")
            return FetchResult(
                feed=_copy_feed(existing, expires_ts=expires_ts),
                not_modified=True,
            )

        if response.status_code >= 400:
            msg = f"抓取失败: {url} ({response.status_code})"
            raise NetworkError(msg)

        # 解析是同步的 CPU 工作，放到线程池里避免阻塞并发抓取
        loop = asyncio.get_running_loop()
        parsed = await loop.run_in_executor(None, parse_feed, response.content, url)
        feed = parsed.feed
        if existing is not None:
            feed.id = existing.id
            feed.folder_id = existing.folder_id
            for article in parsed.articles:
                article.feed_id = existing.id

        feed.expires_ts = compute_expires_ts(response.headers, now, parsed.update_interval)
        feed.etag = response.headers.get("etag")
        feed.last_modified = response.headers.get("last-modified")
        feed.expires = response.headers.get("expires")

        await self._fill_metadata(parsed.articles, cutoff_ts, budget)
        return FetchResult(feed=feed, articles=parsed.articles)

    async def discover(self, url: str) -> DiscoveryResult:
        """从地址发现订阅源，见 :class:`FeedDiscovery`."""
        return await self.discovery.discover(url)

    async def _fill_metadata(
        self,
        articles: list[Article],
        cutoff_ts: int,
        budget: MetadataBudget | None,
    ) -> None:
        """为缺少缩略图、摘要或发布时间的新文章查找页面元数据，只填补空字段."""
        pending = [
            a
            for a in articles
            if (a.thumbnail is None or a.description is None or a.published_at is None)
            and (not cutoff_ts or article_timestamp(a) > cutoff_ts)
        ]
        if not pending:
            return

        results = await asyncio.gather(*(self.metadata.lookup(a.link, budget) for a in pending))
        for article, metadata in zip(pending, results, strict=True):
            if metadata is None:
                continue
            if article.thumbnail is None:
                article.thumbnail = metadata.thumbnail
            if article.description is None:
                article.description = metadata.description
            if article.published_at is None:
                article.published_at = metadata.published_at
