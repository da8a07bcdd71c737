"""键值存储."""

import time

from sqlalchemy import delete
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from pollen.models.database import Database
from pollen.models.settings import SettingItem


class SettingStore:
    """settings 表的读写."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, key: str) -> str | None:
        async with self.db.session() as session:
            item = await session.get(SettingItem, key)
            return item.value if item else None

    async def set(self, key: str, value: str) -> None:
        """写入或覆盖."""
        stmt = sqlite_insert(SettingItem.__table__).values(
            key=key, value=value, updated_at=int(time.time())
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        async with self.db.write() as session:
            await session.execute(stmt)

    async def delete(self, key: str) -> None:
        async with self.db.write() as session:
            await session.execute(
                delete(SettingItem)
                .where(SettingItem.key == key)
                .execution_options(synchronize_session=False)
            )
