"""键值表模型."""

import time

from sqlmodel import Field, SQLModel


class SettingItem(SQLModel, table=True):
    """
    每个账户数据库内的键值项.

    目前用于保存后台刷新留给前台的新文章标记。
    """

    __tablename__ = "settings"  # type: ignore[assignment]

    key: str = Field(primary_key=True)
    value: str
    updated_at: int = Field(
        default_factory=lambda: int(time.time()), description="最后写入时间（秒）"
    )
