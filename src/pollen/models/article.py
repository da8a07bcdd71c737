"""Article 文章模型."""

import time

from sqlmodel import Field, SQLModel

from pollen.utils.timeutil import to_timestamp


class ArticleBase(SQLModel):
    """文章内容字段."""

    id: str
    feed_id: str | None = None
    title: str
    link: str
    source: str
    published_at: str | None = None
    updated_at: str | None = None
    description: str | None = None
    content: str | None = None
    thumbnail: str | None = None


class Article(ArticleBase):
    """文章（内容 + 阅读状态），在解析、同步和存储之间传递."""

    read: bool = False
    saved: bool = False


class ArticleRow(ArticleBase, table=True):
    """文章内容表，状态单独存储在 article_statuses."""

    __tablename__ = "articles"  # type: ignore[assignment]

    id: str = Field(primary_key=True, description="上游标识派生的确定性 ID")
    feed_id: str | None = Field(default=None, foreign_key="feeds.id", index=True)
    sort_timestamp: int = Field(default=0, index=True, description="排序时间 (ms)")
    created_at: int = Field(default_factory=lambda: int(time.time()))


class ArticleStatus(SQLModel, table=True):
    """文章阅读/收藏状态."""

    __tablename__ = "article_statuses"  # type: ignore[assignment]

    article_id: str = Field(primary_key=True, foreign_key="articles.id")
    read: bool = Field(default=False, index=True)
    saved: bool = Field(default=False, index=True)
    last_read_at: int | None = Field(default=None)
    updated_at: int | None = Field(default=None)


def article_timestamp(article: ArticleBase) -> int:
    """文章有效时间（毫秒）：updated_at 优先，其次 published_at，未知为 0."""
    return to_timestamp(article.updated_at) or to_timestamp(article.published_at)
