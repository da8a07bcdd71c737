"""文章存储."""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from sqlalchemy import column, delete, func, literal, null, or_, table, text, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from pollen.models.article import Article, ArticleRow, ArticleStatus, article_timestamp
from pollen.models.database import Database
from pollen.models.feed import Feed
from pollen.store.fts import build_fts_prefix_query
from pollen.utils.collections import chunk
from pollen.utils.html_parser import html_to_text

logger = logging.getLogger(__name__)

# 单条 SQL 的绑定参数数量有上限，批量写入按此分批
BATCH_SIZE = 50
ID_BATCH_SIZE = 500

_CONTENT_COLUMNS = (
    "feed_id",
    "title",
    "link",
    "source",
    "published_at",
    "updated_at",
    "description",
    "content",
    "thumbnail",
    "sort_timestamp",
)

_STATUS_COLUMNS = ("article_id", "read", "saved", "last_read_at", "updated_at")

_fts_table = table("articles_fts", column("article_id"), column("title"), column("body"))


@dataclass
class ArticlePage:
    """分页结果."""

    articles: list[Article] = field(default_factory=list)
    total: int = 0


def _index_bodies(articles: list[Article]) -> dict[str, str]:
    return {a.id: html_to_text(a.content or a.description) for a in articles}


def _to_article(row: ArticleRow, read: bool | None, saved: bool | None) -> Article:
    return Article(
        id=row.id,
        feed_id=row.feed_id,
        title=row.title,
        link=row.link,
        source=row.source,
        published_at=row.published_at,
        updated_at=row.updated_at,
        description=row.description,
        content=row.content,
        thumbnail=row.thumbnail,
        read=bool(read),
        saved=bool(saved),
    )


class ArticleStore:
    """文章内容与状态的持久化."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ---- 写入 ----

    async def upsert_articles(self, articles: list[Article]) -> None:
        """
        幂等写入文章内容.

        已有文章只更新内容字段；状态行仅在首次写入时创建，
        因此重复同步不会覆盖已有的 read/saved 状态。
        """
        if not articles:
            return

        bodies: dict[str, str] = {}
        if self.db.fts_available:
            # HTML 转纯文本较耗 CPU，放到线程池里做
            loop = asyncio.get_running_loop()
            bodies = await loop.run_in_executor(None, _index_bodies, articles)

        now = int(time.time())
        async with self.db.write() as session:
            for batch in chunk(articles, BATCH_SIZE):
                rows = [
                    {
                        "id": a.id,
                        "feed_id": a.feed_id,
                        "title": a.title,
                        "link": a.link,
                        "source": a.source,
                        "published_at": a.published_at,
                        "updated_at": a.updated_at,
                        "description": a.description,
                        "content": a.content,
                        "thumbnail": a.thumbnail,
                        "sort_timestamp": article_timestamp(a),
                        "created_at": now,
                    }
                    for a in batch
                ]
                stmt = sqlite_insert(ArticleRow.__table__).values(rows)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={name: stmt.excluded[name] for name in _CONTENT_COLUMNS},
                )
                await session.execute(stmt)

                statuses = [
                    {
                        "article_id": a.id,
                        "read": a.read,
                        "saved": a.saved,
                        "last_read_at": now if a.read else None,
                        "updated_at": now,
                    }
                    for a in batch
                ]
                status_stmt = sqlite_insert(ArticleStatus.__table__).values(statuses)
                await session.execute(
                    status_stmt.on_conflict_do_nothing(index_elements=["article_id"])
                )

                if self.db.fts_available:
                    await self._index(session, batch, bodies)

    async def _index(
        self, session: AsyncSession, articles: list[Article], bodies: dict[str, str]
    ) -> None:
        """更新全文索引."""
        ids = [a.id for a in articles]
        await session.execute(
            delete(_fts_table).where(_fts_table.c.article_id.in_(ids))
        )
        await session.execute(
            _fts_table.insert().values(
                [
                    {
                        "article_id": a.id,
                        "title": a.title,
                        "body": bodies.get(a.id, ""),
                    }
                    for a in articles
                ]
            )
        )

    async def set_read(self, article_id: str, read: bool) -> None:
        """设置单篇已读状态."""
        await self.set_many_read([article_id], read)

    async def set_saved(self, article_id: str, saved: bool) -> None:
        """设置单篇收藏状态（显式操作，可覆盖已有状态）."""
        now = int(time.time())
        source = select(
            ArticleRow.id, literal(False), literal(saved), null(), literal(now)
        ).where(ArticleRow.id == article_id)
        stmt = sqlite_insert(ArticleStatus.__table__).from_select(_STATUS_COLUMNS, source)
        stmt = stmt.on_conflict_do_update(
            index_elements=["article_id"],
            set_={"saved": stmt.excluded.saved, "updated_at": stmt.excluded.updated_at},
        )
        async with self.db.write() as session:
            await session.execute(stmt)

    async def set_many_read(self, article_ids: list[str], read: bool) -> None:
        """批量设置已读状态（单个事务）."""
        if not article_ids:
            return
        async with self.db.write() as session:
            await self._write_read(session, article_ids, read)

    async def _write_read(
        self, session: AsyncSession, article_ids: list[str], read: bool
    ) -> None:
        # 状态行只为已存在的文章创建，未知 ID 被忽略
        now = int(time.time())
        last_read_at = literal(now) if read else null()
        for batch in chunk(article_ids, ID_BATCH_SIZE):
            source = select(
                ArticleRow.id, literal(read), literal(False), last_read_at, literal(now)
            ).where(ArticleRow.id.in_(batch))
            stmt = sqlite_insert(ArticleStatus.__table__).from_select(_STATUS_COLUMNS, source)
            stmt = stmt.on_conflict_do_update(
                index_elements=["article_id"],
                set_={
                    "read": stmt.excluded.read,
                    "last_read_at": stmt.excluded.last_read_at,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)

    async def set_all_read(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> None:
        """将范围内全部文章标记为已读."""
        async with self.db.write() as session:
            stmt = select(ArticleRow.id).where(*self._scope(feed_id, folder_id))
            result = await session.execute(stmt)
            ids = list(result.scalars().all())
            if ids:
                await self._write_read(session, ids, True)

    async def reconcile_statuses(self, unread_ids: set[str], saved_ids: set[str]) -> None:
        """
        用远端完整 ID 集合覆盖本地状态.

        所有已缓存文章先置为已读、未收藏，再把未读集合和收藏集合中的 ID
        分别翻转。整个过程在一个事务内完成，可重复执行。
        """
        now = int(time.time())
        async with self.db.write() as session:
            await session.execute(
                text(
                    "INSERT INTO article_statuses (article_id, read, saved, updated_at) "
                    "SELECT id, 1, 0, :now FROM articles WHERE 1 "
                    "ON CONFLICT(article_id) DO UPDATE SET "
                    "read=excluded.read, saved=excluded.saved, updated_at=excluded.updated_at"
                ),
                {"now": now},
            )

            for batch in chunk(sorted(unread_ids), ID_BATCH_SIZE):
                await session.execute(
                    update(ArticleStatus)
                    .where(ArticleStatus.article_id.in_(batch))
                    .values(read=False, last_read_at=None, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

            for batch in chunk(sorted(saved_ids), ID_BATCH_SIZE):
                await session.execute(
                    update(ArticleStatus)
                    .where(ArticleStatus.article_id.in_(batch))
                    .values(saved=True, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

    async def delete_older_than(self, older_than_ms: int) -> int:
        """删除排序时间已知且早于阈值的文章，时间未知 (0) 的文章不受影响."""
        condition = (ArticleRow.sort_timestamp > 0) & (
            ArticleRow.sort_timestamp < older_than_ms
        )
        async with self.db.write() as session:
            result = await session.execute(select(ArticleRow.id).where(condition))
            ids = list(result.scalars().all())
            await self._delete_ids(session, ids)

        if ids:
            logger.info(f"清理了 {len(ids)} 篇旧文章")
        return len(ids)

    async def _delete_ids(self, session: AsyncSession, ids: list[str]) -> None:
        for batch in chunk(ids, ID_BATCH_SIZE):
            await session.execute(
                delete(ArticleStatus)
                .where(ArticleStatus.article_id.in_(batch))
                .execution_options(synchronize_session=False)
            )
            if self.db.fts_available:
                await session.execute(
                    delete(_fts_table).where(_fts_table.c.article_id.in_(batch))
                )
            await session.execute(
                delete(ArticleRow)
                .where(ArticleRow.id.in_(batch))
                .execution_options(synchronize_session=False)
            )

    async def remove_by_feed(self, session: AsyncSession, feed_id: str) -> None:
        """删除某个订阅源的全部文章（在调用方事务内执行）."""
        result = await session.execute(
            select(ArticleRow.id).where(ArticleRow.feed_id == feed_id)
        )
        await self._delete_ids(session, list(result.scalars().all()))

    # ---- 查询 ----

    @staticmethod
    def _scope(feed_id: str | None, folder_id: str | None) -> list:
        conditions = []
        if feed_id:
            conditions.append(ArticleRow.feed_id == feed_id)
        if folder_id:
            conditions.append(
                ArticleRow.feed_id.in_(select(Feed.id).where(Feed.folder_id == folder_id))
            )
        return conditions

    @staticmethod
    def _unread_condition():
        return func.coalesce(ArticleStatus.read, False) == False  # noqa: E712

    def _base_select(self):
        return select(ArticleRow, ArticleStatus.read, ArticleStatus.saved).outerjoin(
            ArticleStatus, ArticleStatus.article_id == ArticleRow.id
        )

    async def get(self, article_id: str) -> Article | None:
        """按 ID 获取文章."""
        async with self.db.session() as session:
            result = await session.execute(
                self._base_select().where(ArticleRow.id == article_id)
            )
            row = result.first()
        if row is None:
            return None
        return _to_article(*row)

    async def list_by_feed(self, feed_id: str | None = None) -> list[Article]:
        """按订阅源列出文章（不传则列出全部），按时间倒序."""
        stmt = self._base_select().where(*self._scope(feed_id, None))
        stmt = stmt.order_by(ArticleRow.sort_timestamp.desc(), ArticleRow.created_at.desc())
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [_to_article(*row) for row in result.all()]

    async def _page(
        self, conditions: list, page: int, page_size: int
    ) -> ArticlePage:
        offset = (max(page, 1) - 1) * page_size
        stmt = (
            self._base_select()
            .where(*conditions)
            .order_by(ArticleRow.sort_timestamp.desc(), ArticleRow.created_at.desc())
            .offset(offset)
            .limit(page_size)
        )
        count_stmt = (
            select(func.count())
            .select_from(ArticleRow)
            .outerjoin(ArticleStatus, ArticleStatus.article_id == ArticleRow.id)
            .where(*conditions)
        )
        async with self.db.session() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            result = await session.execute(stmt)
            articles = [_to_article(*row) for row in result.all()]
        return ArticlePage(articles=articles, total=total)

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
        """分页列出文章（page 从 1 开始）."""
        conditions = self._scope(feed_id, folder_id)
        if unread_only:
            conditions.append(self._unread_condition())
        if saved_only:
            conditions.append(ArticleStatus.saved == True)  # noqa: E712
        return await self._page(conditions, page, page_size)

    async def search_page(
        self,
        *,
        query: str,
        feed_id: str | None = None,
        folder_id: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage:
        """
        全文搜索标题和正文.

        全文索引不可用或查询失败时降级为子串匹配。
        """
        fts_query = build_fts_prefix_query(query)
        if not fts_query:
            return ArticlePage()

        scope = self._scope(feed_id, folder_id)
        if self.db.fts_available:
            match_ids = select(_fts_table.c.article_id).where(
                text("articles_fts MATCH :q").bindparams(q=fts_query)
            )
            try:
                return await self._page([*scope, ArticleRow.id.in_(match_ids)], page, page_size)
            except OperationalError as e:
                logger.warning(f"全文搜索失败，降级为子串匹配: {e}")

        pattern = f"%{query.strip()}%"
        like = or_(
            ArticleRow.title.ilike(pattern),
            ArticleRow.description.ilike(pattern),
            ArticleRow.content.ilike(pattern),
        )
        return await self._page([*scope, like], page, page_size)

    async def get_unread_counts_by_feed(self) -> dict[str, int]:
        """各订阅源未读数."""
        stmt = (
            select(ArticleRow.feed_id, func.count())
            .outerjoin(ArticleStatus, ArticleStatus.article_id == ArticleRow.id)
            .where(ArticleRow.feed_id.is_not(None), self._unread_condition())
            .group_by(ArticleRow.feed_id)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return {feed_id: count for feed_id, count in result.all()}

    async def get_unread_count(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> int:
        """范围内未读总数."""
        stmt = (
            select(func.count())
            .select_from(ArticleRow)
            .outerjoin(ArticleStatus, ArticleStatus.article_id == ArticleRow.id)
            .where(*self._scope(feed_id, folder_id), self._unread_condition())
        )
        async with self.db.session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def get_unread_ids(
        self, feed_id: str | None = None, folder_id: str | None = None
    ) -> list[str]:
        """范围内未读文章 ID."""
        stmt = (
            select(ArticleRow.id)
            .outerjoin(ArticleStatus, ArticleStatus.article_id == ArticleRow.id)
            .where(*self._scope(feed_id, folder_id), self._unread_condition())
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def all_ids(self) -> list[str]:
        """全部已缓存文章 ID."""
        async with self.db.session() as session:
            result = await session.execute(select(ArticleRow.id))
            return list(result.scalars().all())

    async def max_numeric_id(self) -> int:
        """已缓存文章中最大的数字 ID（远端增量同步的高水位）."""
        async with self.db.session() as session:
            result = await session.execute(
                text("SELECT MAX(CAST(id AS INTEGER)) FROM articles")
            )
            value = result.scalar()
        return int(value or 0)
