"""订阅源刷新引擎：并发抓取、增量过滤、去重与合并写入."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from importlib import resources

from pollen.config import Settings, get_settings
from pollen.core.opml import is_opml_xml, parse_opml
from pollen.errors import AuthError, ParseError, RefreshFailedError
from pollen.fetcher.client import FeedFetcher, FetchResult
from pollen.fetcher.discovery import FeedCandidate
from pollen.fetcher.metadata import MetadataBudget
from pollen.models.article import Article, article_timestamp
from pollen.models.database import Database
from pollen.models.feed import Feed
from pollen.models.folder import FeedFolder
from pollen.store.articles import ArticleStore
from pollen.store.feeds import FeedStore
from pollen.store.folders import FolderStore
from pollen.utils.collections import dedupe_by_id
from pollen.utils.timeutil import now_ms, to_iso, to_timestamp

logger = logging.getLogger(__name__)

DEFAULT_FEEDS_RESOURCE = "default-feeds.opml"

ProgressCallback = Callable[[int, int], None]


@dataclass
class RefreshResult:
    """一次刷新的结果."""

    feeds_used: list[Feed] = field(default_factory=list)
    new_articles_count: int = 0


@dataclass
class AddFeedResult:
    """
    添加订阅源的结果.

    status 为 added（已抓取并保存）、exists（URL 已订阅）或 choose
    （页面声明了多个订阅源，需要调用方从 candidates 中选择）。
    """

    status: str
    feed: Feed | None = None
    new_articles_count: int = 0
    candidates: list[FeedCandidate] = field(default_factory=list)


@dataclass
class HydrateResult:
    """启动时载入的本地数据，文章按需分页读取."""

    feeds: list[Feed] = field(default_factory=list)
    folders: list[FeedFolder] = field(default_factory=list)


def feed_cutoff(feed: Feed) -> int:
    """订阅源的增量高水位（毫秒），未知为 0."""
    return feed.last_published_ts or to_timestamp(feed.last_published_at)


def merge_fetch_result(feed: Feed, result: FetchResult) -> tuple[Feed, list[Article]]:
    """
    按高水位过滤新文章并推进订阅源的高水位.

    只保留时间严格晚于原高水位的文章；新高水位取保留文章的最大时间
    与原高水位中的较大者。
    """
    cutoff = feed_cutoff(feed)
    kept = [a for a in result.articles if article_timestamp(a) > cutoff]
    for article in kept:
        article.feed_id = feed.id

    high_water = max([cutoff, *(article_timestamp(a) for a in kept)])
    updated = result.feed
    updated.id = feed.id
    updated.last_published_ts = high_water or None
    updated.last_published_at = to_iso(high_water)
    return updated, kept


def load_default_feeds_opml() -> str:
    """读取内置的默认订阅 OPML."""
    return (
        resources.files("pollen")
        .joinpath("data", DEFAULT_FEEDS_RESOURCE)
        .read_text(encoding="utf-8")
    )


class SyncEngine:
    """本地订阅源的刷新与导入."""

    def __init__(
        self,
        db: Database,
        fetcher: FeedFetcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.db = db
        self.fetcher = fetcher or FeedFetcher(settings=self.settings)
        self.articles = ArticleStore(db)
        self.feeds = FeedStore(db)
        self.folders = FolderStore(db)

    async def close(self) -> None:
        """关闭抓取客户端."""
        await self.fetcher.close()

    async def hydrate(self, feed_id: str | None = None) -> HydrateResult:
        """载入订阅源和文件夹."""
        feeds = await self.feeds.list()
        if feed_id:
            feeds = [f for f in feeds if f.id == feed_id]
        return HydrateResult(feeds=feeds, folders=await self.folders.list())

    async def _candidates(self, selected_feed_id: str | None) -> list[Feed]:
        feeds = await self.feeds.list()
        if selected_feed_id:
            return [f for f in feeds if f.id == selected_feed_id]
        return feeds

    async def refresh(
        self,
        selected_feed_id: str | None = None,
        reason: str = "foreground",
        seed_defaults: bool = False,
    ) -> RefreshResult:
        """
        刷新订阅源.

        Args:
            selected_feed_id: 只刷新该订阅源，None 表示全部
            reason: manual / foreground / background，非 manual 时跳过
                仍在新鲜期内的订阅源
            seed_defaults: 没有任何订阅源时先导入内置默认订阅

        Returns:
            RefreshResult: 参与刷新的订阅源和去重后的新文章数

        Raises:
            AuthError: 所有订阅源失败且其中有认证错误
            RefreshFailedError: 所有订阅源均失败
        """
        candidates = await self._candidates(selected_feed_id)
        if not candidates and seed_defaults and not selected_feed_id:
            logger.info("没有订阅源，导入默认订阅")
            await self.import_opml(load_default_feeds_opml())
            candidates = await self._candidates(None)

        if not candidates:
            return RefreshResult()

        now = now_ms()
        if reason == "manual":
            eligible = candidates
        else:
            eligible = [f for f in candidates if not f.expires_ts or f.expires_ts <= now]
        if not eligible:
            logger.debug(f"{len(candidates)} 个订阅源均在新鲜期内，跳过抓取")
            return RefreshResult(feeds_used=candidates)

        budget = MetadataBudget(self.settings.metadata_budget)
        semaphore = asyncio.Semaphore(self.settings.refresh_concurrency)

        async def fetch_with_semaphore(feed: Feed) -> FetchResult:
            async with semaphore:
                return await self.fetcher.fetch(
                    feed.url,
                    existing=feed,
                    cutoff_ts=feed_cutoff(feed),
                    budget=budget,
                )

        results = await asyncio.gather(
            *(fetch_with_semaphore(feed) for feed in eligible),
            return_exceptions=True,
        )

        feeds_for_upsert: list[Feed] = []
        articles_for_upsert: list[Article] = []
        errors: list[Exception] = []
        for feed, result in zip(eligible, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(f"刷新订阅源失败: {feed.url} - {result}")
                errors.append(result)
                continue
            if isinstance(result, BaseException):
                raise result
            updated, kept = merge_fetch_result(feed, result)
            feeds_for_upsert.append(updated)
            articles_for_upsert.extend(kept)

        if not feeds_for_upsert:
            for error in errors:
                if isinstance(error, AuthError):
                    raise error
            msg = f"全部 {len(eligible)} 个订阅源刷新失败"
            raise RefreshFailedError(msg, cause=errors[0]) from errors[0]

        deduped = dedupe_by_id(articles_for_upsert)
        await self.feeds.upsert(feeds_for_upsert)
        await self.articles.upsert_articles(deduped)

        logger.info(
            f"刷新完成 ({reason}): {len(feeds_for_upsert)}/{len(eligible)} 个订阅源, "
            f"新文章 {len(deduped)} 篇"
        )
        return RefreshResult(feeds_used=eligible, new_articles_count=len(deduped))

    async def import_opml(
        self,
        opml_text: str | bytes,
        on_progress: ProgressCallback | None = None,
    ) -> list[Feed]:
        """
        导入 OPML 订阅.

        已存在（按 URL）和文档内重复的订阅源会被跳过；抓取失败的订阅源
        不会导入。

        Returns:
            list[Feed]: 成功导入的订阅源

        Raises:
            ParseError: 内容不是 OPML
        """
        if not is_opml_xml(opml_text):
            msg = "无效的 OPML 文件"
            raise ParseError(msg)

        parsed = parse_opml(opml_text)
        known_urls = {f.url for f in await self.feeds.list()}
        pending: list[Feed] = []
        for feed in parsed:
            if feed.url in known_urls:
                continue
            known_urls.add(feed.url)
            pending.append(feed)

        total = len(pending)
        done = 0
        if on_progress:
            on_progress(done, total)

        budget = MetadataBudget(self.settings.metadata_budget)
        semaphore = asyncio.Semaphore(self.settings.refresh_concurrency)

        async def fetch_with_semaphore(feed: Feed) -> FetchResult:
            nonlocal done
            async with semaphore:
                try:
                    return await self.fetcher.fetch(
                        feed.url, existing=feed, cutoff_ts=0, budget=budget
                    )
                finally:
                    done += 1
                    if on_progress:
                        on_progress(done, total)

        results = await asyncio.gather(
            *(fetch_with_semaphore(feed) for feed in pending),
            return_exceptions=True,
        )

        feeds_for_upsert: list[Feed] = []
        articles_for_upsert: list[Article] = []
        for feed, result in zip(pending, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(f"导入订阅源失败: {feed.url} - {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            updated, kept = merge_fetch_result(feed, result)
            feeds_for_upsert.append(updated)
            articles_for_upsert.extend(kept)

        await self.feeds.upsert(feeds_for_upsert)
        await self.articles.upsert_articles(dedupe_by_id(articles_for_upsert))

        logger.info(f"OPML 导入完成: {len(feeds_for_upsert)}/{total} 个订阅源")
        return feeds_for_upsert

    async def add_feed(self, url: str) -> AddFeedResult:
        """
        按地址添加单个订阅源.

        地址可以是订阅源本身，也可以是声明了 alternate 订阅源的网页。
        页面只声明一个订阅源时直接添加；声明多个时返回候选列表。
        新订阅源以 cutoff 0 抓取，文章和高水位一并写入。

        Raises:
            ValueError: 地址不是 http(s) URL
            ParseError: 地址指向 OPML 文件，或页面上没有订阅源
            NetworkError: 地址或订阅源无法加载
        """
        url = url.strip()
        if not url.startswith(("http://", "https://")):
            msg = "订阅地址必须是 http(s) URL"
            raise ValueError(msg)

        known = {f.url: f for f in await self.feeds.list()}
        if url in known:
            return AddFeedResult(status="exists", feed=known[url])

        discovered = await self.fetcher.discover(url)
        if discovered.opml_url:
            msg = "该地址是 OPML 文件，请使用 OPML 导入"
            raise ParseError(msg)

        if discovered.direct_url:
            target = discovered.direct_url
        elif len(discovered.candidates) == 1:
            target = discovered.candidates[0].url
        elif discovered.candidates:
            return AddFeedResult(status="choose", candidates=discovered.candidates)
        else:
            msg = f"没有找到 RSS 或 Atom 订阅源: {url}"
            raise ParseError(msg)

        if target in known:
            return AddFeedResult(status="exists", feed=known[target])

        budget = MetadataBudget(self.settings.metadata_budget)
        result = await self.fetcher.fetch(target, cutoff_ts=0, budget=budget)
        feed, kept = merge_fetch_result(result.feed, result)
        kept = dedupe_by_id(kept)

        await self.feeds.upsert([feed])
        await self.articles.upsert_articles(kept)

        logger.info(f"添加订阅源 {feed.title} ({target}): {len(kept)} 篇文章")
        return AddFeedResult(status="added", feed=feed, new_articles_count=len(kept))
