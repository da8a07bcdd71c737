"""文件夹存储."""

import time
import uuid

from sqlalchemy import delete, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import select

from pollen.models.database import Database
from pollen.models.feed import Feed
from pollen.models.folder import FeedFolder


def _require_title(title: str) -> str:
    trimmed = title.strip()
    if not trimmed:
        msg = "文件夹名称不能为空"
        raise ValueError(msg)
    return trimmed


class FolderStore:
    """文件夹持久化及订阅源归属."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, title: str) -> FeedFolder:
        """新建文件夹."""
        folder = FeedFolder(
            id=str(uuid.uuid4()),
            title=_require_title(title),
            created_at=int(time.time()),
        )
        async with self.db.write() as session:
            session.add(folder)
        return folder

    async def rename(self, folder_id: str, title: str) -> None:
        """重命名文件夹."""
        trimmed = _require_title(title)
        async with self.db.write() as session:
            await session.execute(
                update(FeedFolder)
                .where(FeedFolder.id == folder_id)
                .values(title=trimmed)
                .execution_options(synchronize_session=False)
            )

    async def delete(self, folder_id: str) -> None:
        """删除文件夹，其下订阅源变为未分组（不删除订阅源）."""
        async with self.db.write() as session:
            await session.execute(
                update(Feed)
                .where(Feed.folder_id == folder_id)
                .values(folder_id=None)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(FeedFolder)
                .where(FeedFolder.id == folder_id)
                .execution_options(synchronize_session=False)
            )

    async def set_feed_folder(self, feed_id: str, folder_id: str | None) -> None:
        """设置订阅源所属文件夹，None 表示移出."""
        async with self.db.write() as session:
            await session.execute(
                update(Feed)
                .where(Feed.id == feed_id)
                .values(folder_id=folder_id)
                .execution_options(synchronize_session=False)
            )

    async def upsert(self, folders: list[FeedFolder]) -> None:
        """批量写入文件夹，已存在的只更新名称."""
        if not folders:
            return
        async with self.db.write() as session:
            stmt = sqlite_insert(FeedFolder.__table__).values(
                [
                    {"id": f.id, "title": f.title, "created_at": f.created_at}
                    for f in folders
                ]
            )
            await session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["id"], set_={"title": stmt.excluded.title}
                )
            )

    async def list(self) -> list[FeedFolder]:
        """按名称列出文件夹."""
        async with self.db.session() as session:
            result = await session.execute(
                select(FeedFolder).order_by(FeedFolder.title.asc())
            )
            return list(result.scalars().all())
