"""Fever 远程账户后端."""

import asyncio
import logging
import time
from typing import Any

from pollen.core.coordinator import RefreshContext
from pollen.core.refresh import AddFeedResult, HydrateResult, RefreshResult
from pollen.errors import NotSupportedError
from pollen.models.article import Article
from pollen.models.database import Database
from pollen.models.feed import Feed
from pollen.models.folder import FeedFolder
from pollen.reader.base import ArticlesApi, FeedsApi, FoldersApi, ReaderStrategy
from pollen.reader.fever_client import FeverClient, ensure_auth, parse_ids
from pollen.reader.overlay import StatusOverlay
from pollen.store.articles import ArticlePage, ArticleStore
from pollen.store.feeds import FeedStore
from pollen.store.folders import FolderStore
from pollen.utils.collections import chunk
from pollen.utils.html_parser import extract_first_image
from pollen.utils.timeutil import to_iso

logger = logging.getLogger(__name__)

# 远端没有批量标记接口，逐条标记时每批并发的请求数
MARK_BATCH_SIZE = 50
DEFAULT_SOURCE = "Fever"


def _seconds_to_iso(value: Any) -> str | None:
    try:
        seconds = int(value or 0)
    except (TypeError, ValueError):
        return None
    return to_iso(seconds * 1000)


def build_folder_map(feeds_groups: list[dict[str, Any]]) -> dict[str, str]:
    """
    订阅源 → 分组映射.

    同一订阅源出现在多个分组时取第一个。兼容标准 Fever 的
    ``{group_id, feed_ids: "1,2"}`` 和逐条的 ``{group_id, feed_id}`` 两种格式。
    """
    mapping: dict[str, str] = {}
    for group in feeds_groups:
        group_id = str(group.get("group_id"))
        if "feed_ids" in group:
            feed_ids = [i.strip() for i in str(group["feed_ids"]).split(",") if i.strip()]
        else:
            feed_ids = [str(group.get("feed_id"))]
        for feed_id in feed_ids:
            mapping.setdefault(feed_id, group_id)
    return mapping


def _to_feed(raw: dict[str, Any], folder_map: dict[str, str]) -> Feed:
    feed_id = str(raw["id"])
    return Feed(
        id=feed_id,
        title=raw.get("title") or raw.get("url") or feed_id,
        url=raw.get("url") or "",
        html_url=raw.get("site_url") or None,
        folder_id=folder_map.get(feed_id),
        last_updated=_seconds_to_iso(raw.get("last_updated_on_time")),
    )


def _to_article(raw: dict[str, Any], feeds_by_id: dict[str, Feed]) -> Article:
    feed_id = str(raw.get("feed_id"))
    feed = feeds_by_id.get(feed_id)
    html = raw.get("html")
    return Article(
        id=str(raw["id"]),
        feed_id=feed_id,
        title=raw.get("title") or "Untitled",
        link=raw.get("url") or "",
        source=feed.title if feed else DEFAULT_SOURCE,
        published_at=_seconds_to_iso(raw.get("created_on_time")),
        content=html,
        thumbnail=extract_first_image(html),
        read=raw.get("is_read") == 1,
        saved=raw.get("is_saved") == 1,
    )


class FeverArticlesApi(ArticlesApi):
    """
    文章状态修改先写远端再写本地.

    远端失败时异常直接抛出，本地库保持不变；远端确认前的读取通过
    :class:`StatusOverlay` 看到待写入的状态。
    """

    def __init__(self, store: ArticleStore, client: FeverClient) -> None:
        self.store = store
        self.client = client
        self.overlay = StatusOverlay()

    async def list_page(
        self,
        *,
        feed_id: str | None = None,
        folder_id: str | None = None,
        unread_only: bool = False,
        saved_only: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage:
        result = await self.store.list_page(
            feed_id=feed_id,
            folder_id=folder_id,
            unread_only=unread_only,
            saved_only=saved_only,
            page=page,
            page_size=page_size,
        )
        result.articles = self.overlay.apply_many(result.articles)
        return result

    async def search_page(
        self,
        *,
        query: str,
        feed_id: str | None = None,
        folder_id: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage:
        result = await self.store.search_page(
            query=query, feed_id=feed_id, folder_id=folder_id, page=page, page_size=page_size
        )
        result.articles = self.overlay.apply_many(result.articles)
        return result

    async def get(self, article_id: str) -> Article | None:
        return self.overlay.apply(await self.store.get(article_id))

    async def upsert(self, articles: list[Article]) -> None:
        await self.store.upsert_articles(articles)

    async def get_unread_counts_by_feed(self) -> dict[str, int]:
        return await self.store.get_unread_counts_by_feed()

    async def get_unread_count(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> int:
        return await self.store.get_unread_count(feed_id, folder_id)

    async def _mark_many(self, article_ids: list[str], as_: str) -> None:
        for batch in chunk(article_ids, MARK_BATCH_SIZE):
            await asyncio.gather(*(self.client.mark_item(i, as_) for i in batch))

    async def set_read(self, article_id: str, read: bool) -> None:
        with self.overlay.pending([article_id], read=read):
            await self.client.mark_item(article_id, "read" if read else "unread")
            await self.store.set_read(article_id, read)

    async def set_saved(self, article_id: str, saved: bool) -> None:
        with self.overlay.pending([article_id], saved=saved):
            await self.client.mark_item(article_id, "saved" if saved else "unsaved")
            await self.store.set_saved(article_id, saved)

    async def set_many_read(self, article_ids: list[str], read: bool) -> None:
        if not article_ids:
            return
        with self.overlay.pending(article_ids, read=read):
            await self._mark_many(article_ids, "read" if read else "unread")
            await self.store.set_many_read(article_ids, read)

    async def set_all_read(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> None:
        ids = await self.store.get_unread_ids(feed_id, folder_id)
        await self.set_many_read(ids, True)

    async def delete_older_than(self, older_than_ms: int) -> int:
        return await self.store.delete_older_than(older_than_ms)


class FeverFeedsApi(FeedsApi):
    def __init__(self, store: FeedStore) -> None:
        self.store = store

    async def add(self, url: str) -> AddFeedResult:
        msg = "Fever API 不支持添加订阅源"
        raise NotSupportedError(msg)

    async def upsert(self, feeds: list[Feed]) -> None:
        msg = "Fever API 不支持管理订阅源"
        raise NotSupportedError(msg)

    async def remove(self, feed_id: str) -> None:
        msg = "Fever API 不支持管理订阅源"
        raise NotSupportedError(msg)

    async def list(self) -> list[Feed]:
        return await self.store.list()


class FeverFoldersApi(FoldersApi):
    def __init__(self, store: FolderStore) -> None:
        self.store = store

    def _unsupported(self) -> NotSupportedError:
        msg = "Fever API 不支持管理分组"
        return NotSupportedError(msg)

    async def create(self, title: str) -> FeedFolder:
        raise self._unsupported()

    async def rename(self, folder_id: str, title: str) -> None:
        raise self._unsupported()

    async def delete(self, folder_id: str) -> None:
        raise self._unsupported()

    async def set_feed_folder(self, feed_id: str, folder_id: str | None) -> None:
        raise self._unsupported()

    async def list(self) -> list[FeedFolder]:
        return await self.store.list()


class FeverReaderStrategy(ReaderStrategy):
    """Fever 账户：服务端负责抓取，本地只做缓存和状态对账."""

    kind = "fever"

    def __init__(self, account_id: str, db: Database, client: FeverClient) -> None:
        super().__init__(account_id, db)
        self.client = client
        self.article_store = ArticleStore(db)
        self.feed_store = FeedStore(db)
        self.folder_store = FolderStore(db)
        self.articles = FeverArticlesApi(self.article_store, client)
        self.feeds = FeverFeedsApi(self.feed_store)
        self.folders = FeverFoldersApi(self.folder_store)

    async def hydrate(self, feed_id: str | None = None) -> HydrateResult:
        return HydrateResult(
            feeds=await self.feed_store.list(),
            folders=await self.folder_store.list(),
        )

    async def refresh(self, context: RefreshContext) -> RefreshResult:
        """
        从服务端同步.

        并发拉取分组、订阅源、映射、增量文章和完整的未读/收藏 ID 集合，
        任一响应认证失败则整体中止。写入顺序为分组、订阅源、文章，
        最后用 ID 集合覆盖全部本地状态。

        Raises:
            AuthError: 认证失败
            NetworkError: 请求失败
        """
        since_id = await self.article_store.max_numeric_id()

        groups_res, feeds_res, feeds_groups_res, items_res, ids_res = await asyncio.gather(
            self.client.request(groups=True),
            self.client.request(feeds=True),
            self.client.request(feeds_groups=True),
            self.client.request(items=True, since_id=since_id),
            self.client.request(unread_item_ids=True, saved_item_ids=True),
        )
        for response in (groups_res, feeds_res, feeds_groups_res, items_res, ids_res):
            ensure_auth(response)

        now = int(time.time())
        folders = [
            FeedFolder(id=str(g["id"]), title=g.get("title") or str(g["id"]), created_at=now)
            for g in groups_res.get("groups") or []
        ]
        folder_map = build_folder_map(feeds_groups_res.get("feeds_groups") or [])
        feeds = [_to_feed(f, folder_map) for f in feeds_res.get("feeds") or []]
        feeds_by_id = {f.id: f for f in feeds}
        items = [_to_article(i, feeds_by_id) for i in items_res.get("items") or []]

        await self.folder_store.upsert(folders)
        await self.feed_store.upsert(feeds, assign_folders=True)
        await self.article_store.upsert_articles(items)

        unread_ids = parse_ids(ids_res.get("unread_item_ids"))
        saved_ids = parse_ids(ids_res.get("saved_item_ids"))
        await self.article_store.reconcile_statuses(unread_ids, saved_ids)

        logger.info(
            f"Fever 同步完成 ({context.reason}): {len(feeds)} 个订阅源, "
            f"{len(items)} 篇新文章, 未读 {len(unread_ids)}, 收藏 {len(saved_ids)}"
        )
        return RefreshResult(feeds_used=feeds, new_articles_count=len(items))

    async def close(self) -> None:
        await self.client.close()
