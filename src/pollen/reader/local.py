"""本地订阅后端：直接抓取订阅源，数据只存在本地."""

from pollen.config import Settings
from pollen.core.coordinator import RefreshContext
from pollen.core.refresh import (
    AddFeedResult,
    HydrateResult,
    ProgressCallback,
    RefreshResult,
    SyncEngine,
)
from pollen.fetcher.client import FeedFetcher
from pollen.models.article import Article
from pollen.models.database import Database
from pollen.models.feed import Feed
from pollen.models.folder import FeedFolder
from pollen.reader.base import ArticlesApi, FeedsApi, FoldersApi, ReaderStrategy
from pollen.store.articles import ArticlePage, ArticleStore
from pollen.store.folders import FolderStore

LOCAL_ACCOUNT_ID = "local"


class LocalArticlesApi(ArticlesApi):
    def __init__(self, store: ArticleStore) -> None:
        self.store = store

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
        return await self.store.list_page(
            feed_id=feed_id,
            folder_id=folder_id,
            unread_only=unread_only,
            saved_only=saved_only,
            page=page,
            page_size=page_size,
        )

    async def search_page(
        self,
        *,
        query: str,
        feed_id: str | None = None,
        folder_id: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage:
        return await self.store.search_page(
            query=query, feed_id=feed_id, folder_id=folder_id, page=page, page_size=page_size
        )

    async def get(self, article_id: str) -> Article | None:
        return await self.store.get(article_id)

    async def upsert(self, articles: list[Article]) -> None:
        await self.store.upsert_articles(articles)

    async def get_unread_counts_by_feed(self) -> dict[str, int]:
        return await self.store.get_unread_counts_by_feed()

    async def get_unread_count(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> int:
        return await self.store.get_unread_count(feed_id, folder_id)

    async def set_read(self, article_id: str, read: bool) -> None:
        await self.store.set_read(article_id, read)

    async def set_saved(self, article_id: str, saved: bool) -> None:
        await self.store.set_saved(article_id, saved)

    async def set_many_read(self, article_ids: list[str], read: bool) -> None:
        await self.store.set_many_read(article_ids, read)

    async def set_all_read(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> None:
        await self.store.set_all_read(feed_id, folder_id)

    async def delete_older_than(self, older_than_ms: int) -> int:
        return await self.store.delete_older_than(older_than_ms)


class LocalFeedsApi(FeedsApi):
    def __init__(self, engine: SyncEngine) -> None:
        self.engine = engine
        self.store = engine.feeds

    async def add(self, url: str) -> AddFeedResult:
        return await self.engine.add_feed(url)

    async def upsert(self, feeds: list[Feed]) -> None:
        await self.store.upsert(feeds)

    async def remove(self, feed_id: str) -> None:
        await self.store.remove(feed_id)

    async def list(self) -> list[Feed]:
        return await self.store.list()


class LocalFoldersApi(FoldersApi):
    def __init__(self, store: FolderStore) -> None:
        self.store = store

    async def create(self, title: str) -> FeedFolder:
        return await self.store.create(title)

    async def rename(self, folder_id: str, title: str) -> None:
        await self.store.rename(folder_id, title)

    async def delete(self, folder_id: str) -> None:
        await self.store.delete(folder_id)

    async def set_feed_folder(self, feed_id: str, folder_id: str | None) -> None:
        await self.store.set_feed_folder(feed_id, folder_id)

    async def list(self) -> list[FeedFolder]:
        return await self.store.list()


class LocalReaderStrategy(ReaderStrategy):
    """本地后端，刷新由 :class:`SyncEngine` 完成."""

    kind = "local"
    supports_opml_import = True

    def __init__(
        self,
        db: Database,
        fetcher: FeedFetcher | None = None,
        settings: Settings | None = None,
        seed_defaults: bool = False,
    ) -> None:
        super().__init__(LOCAL_ACCOUNT_ID, db)
        self.engine = SyncEngine(db, fetcher=fetcher, settings=settings)
        self.seed_defaults = seed_defaults
        self.articles = LocalArticlesApi(self.engine.articles)
        self.feeds = LocalFeedsApi(self.engine)
        self.folders = LocalFoldersApi(self.engine.folders)

    async def hydrate(self, feed_id: str | None = None) -> HydrateResult:
        return await self.engine.hydrate(feed_id)

    async def refresh(self, context: RefreshContext) -> RefreshResult:
        return await self.engine.refresh(
            selected_feed_id=context.selected_feed_id,
            reason=context.reason,
            seed_defaults=self.seed_defaults,
        )

    async def import_opml(
        self,
        opml_text: str | bytes,
        on_progress: ProgressCallback | None = None,
    ) -> list[Feed]:
        return await self.engine.import_opml(opml_text, on_progress=on_progress)

    async def close(self) -> None:
        await self.engine.close()
