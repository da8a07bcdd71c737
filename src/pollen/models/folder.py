"""FeedFolder 文件夹模型."""

import time

from sqlmodel import Field, SQLModel


class FeedFolder(SQLModel, table=True):
    """订阅源文件夹（不支持嵌套）."""

    __tablename__ = "feed_folders"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    title: str = Field(description="文件夹名称")
    created_at: int = Field(
        default_factory=lambda: int(time.time()), description="创建时间（秒）"
    )
