"""阅读后端抽象：本地订阅或远程账户共用的接口."""

from abc import ABC, abstractmethod

from pollen.core.coordinator import RefreshContext
from pollen.core.refresh import (
    AddFeedResult,
    HydrateResult,
    ProgressCallback,
    RefreshResult,
)
from pollen.errors import NotSupportedError
from pollen.models.article import Article
from pollen.models.database import Database
from pollen.models.feed import Feed
from pollen.models.folder import FeedFolder
from pollen.store.articles import ArticlePage


class ArticlesApi(ABC):
    """文章读写."""

    @abstractmethod
    async def list_page(
        self,
        *,
        feed_id: str | None = None,
        folder_id: str | None = None,
        unread_only: bool = False,
        saved_only: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage: ...

    @abstractmethod
    async def search_page(
        self,
        *,
        query: str,
        feed_id: str | None = None,
        folder_id: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage: ...

    @abstractmethod
    async def get(self, article_id: str) -> Article | None: ...

    @abstractmethod
    async def upsert(self, articles: list[Article]) -> None: ...

    @abstractmethod
    async def get_unread_counts_by_feed(self) -> dict[str, int]: ...

    @abstractmethod
    async def get_unread_count(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> int: ...

    @abstractmethod
    async def set_read(self, article_id: str, read: bool) -> None: ...

    @abstractmethod
    async def set_saved(self, article_id: str, saved: bool) -> None: ...

    @abstractmethod
    async def set_many_read(self, article_ids: list[str], read: bool) -> None: ...

    @abstractmethod
    async def set_all_read(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> None: ...

    @abstractmethod
    async def delete_older_than(self, older_than_ms: int) -> int: ...


class FeedsApi(ABC):
    """订阅源管理."""

    @abstractmethod
    async def add(self, url: str) -> AddFeedResult: ...

    @abstractmethod
    async def upsert(self, feeds: list[Feed]) -> None: ...

    @abstractmethod
    async def remove(self, feed_id: str) -> None: ...

    @abstractmethod
    async def list(self) -> list[Feed]: ...


class FoldersApi(ABC):
    """文件夹管理."""

    @abstractmethod
    async def create(self, title: str) -> FeedFolder: ...

    @abstractmethod
    async def rename(self, folder_id: str, title: str) -> None: ...

    @abstractmethod
    async def delete(self, folder_id: str) -> None: ...

    @abstractmethod
    async def set_feed_folder(self, feed_id: str, folder_id: str | None) -> None: ...

    @abstractmethod
    async def list(self) -> list[FeedFolder]: ...


class ReaderStrategy(ABC):
    """
    阅读后端.

    每个账户对应一个实例，数据落在该账户自己的数据库中。
    """

    kind: str = ""
    supports_opml_import: bool = False

    articles: ArticlesApi
    feeds: FeedsApi
    folders: FoldersApi

    def __init__(self, account_id: str, db: Database) -> None:
        self.account_id = account_id
        self.db = db

    @abstractmethod
    async def hydrate(self, feed_id: str | None = None) -> HydrateResult:
        """载入订阅源和文件夹."""
        ...

    @abstractmethod
    async def refresh(self, context: RefreshContext) -> RefreshResult:
        """执行一次同步."""
        ...

    async def import_opml(
        self,
        opml_text: str | bytes,
        on_progress: ProgressCallback | None = None,
    ) -> list[Feed]:
        """导入 OPML，默认不支持."""
        msg = f"{self.kind} 账户不支持导入 OPML"
        raise NotSupportedError(msg)

    async def close(self) -> None:
        """释放网络客户端等资源."""
