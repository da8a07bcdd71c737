"""订阅源存储."""

import logging

from sqlalchemy import delete, func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import select

from pollen.models.database import Database
from pollen.models.feed import Feed
from pollen.store.articles import ArticleStore

logger = logging.getLogger(__name__)

# 新值为空时保留旧值的列
_COALESCE_COLUMNS = (
    "last_published_at",
    "last_published_ts",
    "expires_ts",
    "expires",
    "etag",
    "last_modified",
)
_OVERWRITE_COLUMNS = ("title", "url", "description", "image", "last_updated")


def _feed_values(feed: Feed) -> dict:
    return {
        "id": feed.id,
        "title": feed.title,
        "url": feed.url,
        "html_url": feed.html_url,
        "description": feed.description,
        "image": feed.image,
        "folder_id": feed.folder_id,
        "last_updated": feed.last_updated,
        "last_published_at": feed.last_published_at,
        "last_published_ts": feed.last_published_ts,
        "expires_ts": feed.expires_ts,
        "expires": feed.expires,
        "etag": feed.etag,
        "last_modified": feed.last_modified,
        "created_at": feed.created_at,
    }


class FeedStore:
    """订阅源持久化."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, feed_id: str) -> Feed | None:
        """按 ID 获取订阅源."""
        async with self.db.session() as session:
            return await session.get(Feed, feed_id)

    async def upsert(self, feeds: list[Feed], *, assign_folders: bool = False) -> None:
        """
        合并写入订阅源.

        新鲜度字段只有新值非空时才覆盖；``html_url`` 和 ``folder_id``
        同理，除非 ``assign_folders`` 为真（远端同步以服务端分组为准）。
        """
        if not feeds:
            return

        async with self.db.write() as session:
            for feed in feeds:
                logger.debug(f"写入订阅源 {feed.id} {feed.url} expires_ts={feed.expires_ts}")
                stmt = sqlite_insert(Feed.__table__).values(_feed_values(feed))
                excluded = stmt.excluded
                table = Feed.__table__.c
                set_ = {name: excluded[name] for name in _OVERWRITE_COLUMNS}
                for name in _COALESCE_COLUMNS:
                    set_[name] = func.coalesce(excluded[name], table[name])
                set_["html_url"] = func.coalesce(excluded.html_url, table.html_url)
                set_["folder_id"] = (
                    excluded.folder_id
                    if assign_folders
                    else func.coalesce(excluded.folder_id, table.folder_id)
                )
                await session.execute(
                    stmt.on_conflict_do_update(index_elements=["id"], set_=set_)
                )

    async def remove(self, feed_id: str) -> None:
        """删除订阅源及其全部文章."""
        articles = ArticleStore(self.db)
        async with self.db.write() as session:
            await articles.remove_by_feed(session, feed_id)
            await session.execute(
                delete(Feed).where(Feed.id == feed_id).execution_options(
                    synchronize_session=False
                )
            )
        logger.info(f"已删除订阅源 {feed_id}")

    async def list(self) -> list[Feed]:
        """按标题列出全部订阅源."""
        async with self.db.session() as session:
            result = await session.execute(select(Feed).order_by(Feed.title.asc()))
            return list(result.scalars().all())
