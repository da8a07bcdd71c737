"""数据库初始化和会话管理."""

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

# 注册所有表
from pollen.models.article import ArticleRow, ArticleStatus  # noqa: F401
from pollen.models.feed import Feed  # noqa: F401
from pollen.models.folder import FeedFolder  # noqa: F401
from pollen.models.settings import SettingItem  # noqa: F401

logger = logging.getLogger(__name__)

DEFAULT_DB_KEY = "__default__"

# 后续版本新增的列：(表, 列, 定义)
_ADDED_COLUMNS: list[tuple[str, str, str]] = [
    ("feeds", "last_published_ts", "INTEGER"),
    ("feeds", "last_published_at", "VARCHAR"),
    ("feeds", "expires_ts", "INTEGER"),
    ("feeds", "expires", "VARCHAR"),
    ("feeds", "etag", "VARCHAR"),
    ("feeds", "last_modified", "VARCHAR"),
    ("feeds", "folder_id", "VARCHAR"),
]

_FTS_DDL = (
    "CREATE VIRTUAL TABLE IF NOT EXISTS articles_fts "
    "USING fts5(article_id UNINDEXED, title, body)"
)


class Database:
    """单个 SQLite 数据库：引擎、会话工厂和写入串行化."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        if ":memory:" in database_url:
            self.engine: AsyncEngine = create_async_engine(
                database_url, echo=False, poolclass=StaticPool
            )
        else:
            self.engine = create_async_engine(database_url, echo=False)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        # 同一连接上的写事务不能交错
        self.write_lock = asyncio.Lock()
        self.fts_available = False
        self._initialized = False

    async def init(self) -> None:
        """创建所有表并执行增量迁移."""
        if self._initialized:
            return

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

        await self._add_missing_columns()
        await self._init_fts()
        self._initialized = True

    async def _add_missing_columns(self) -> None:
        """添加缺失的列（旧数据库升级）."""
        async with self.session_factory() as session:
            for table, column, definition in _ADDED_COLUMNS:
                result = await session.execute(text(f"PRAGMA table_info({table})"))
                columns = [row[1] for row in result.fetchall()]
                if column not in columns:
                    logger.info(f"添加 {table}.{column} 列")
                    await session.execute(
                        text(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
                    )
            await session.commit()

    async def _init_fts(self) -> None:
        """创建全文索引表，SQLite 未编译 FTS5 时降级为 LIKE 搜索."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text(_FTS_DDL))
        except OperationalError as e:
            logger.warning(f"全文索引不可用，搜索将降级为子串匹配: {e}")
            self.fts_available = False
            return
        self.fts_available = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """只读会话."""
        async with self.session_factory() as session:
            yield session

    @asynccontextmanager
    async def write(self) -> AsyncIterator[AsyncSession]:
        """
        写入会话.

        串行化同一数据库的写入；块内全部语句在一个事务中提交，
        出错时整体回滚。
        """
        async with self.write_lock, self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        """关闭引擎."""
        await self.engine.dispose()


# 按账户隔离的数据库实例
_databases: dict[str, Database] = {}


def database_url_for_key(data_dir: str, db_key: str | None) -> str:
    """根据账户命名空间生成数据库文件 URL."""
    if not db_key:
        filename = "pollen.db"
    else:
        safe = re.sub(r"[^a-zA-Z0-9._-]+", "_", db_key)[:64]
        filename = f"pollen-{safe}.db"
    path = Path(data_dir) / filename
    return f"sqlite+aiosqlite:///{path}"


def register_database(db: Database, db_key: str | None = None) -> None:
    """注册数据库实例（测试或自定义 URL 时使用）."""
    _databases[db_key or DEFAULT_DB_KEY] = db


async def get_database(db_key: str | None = None) -> Database:
    """获取（必要时创建并初始化）指定账户的数据库."""
    from pollen.config import get_settings

    key = db_key or DEFAULT_DB_KEY
    db = _databases.get(key)
    if db is None:
        settings = get_settings()
        url = (
            settings.database_url
            if db_key is None
            else database_url_for_key(settings.data_dir, db_key)
        )
        db = Database(url)
        _databases[key] = db
    await db.init()
    return db


async def dispose_databases() -> None:
    """关闭所有数据库引擎."""
    for db in list(_databases.values()):
        await db.dispose()
    _databases.clear()
