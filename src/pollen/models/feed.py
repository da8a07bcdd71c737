"""Feed 订阅源模型."""

import time

from sqlmodel import Field, SQLModel


class Feed(SQLModel, table=True):
    """RSS/Atom 订阅源."""

    __tablename__ = "feeds"  # type: ignore[assignment]

    id: str = Field(primary_key=True, description="由订阅源 URL 派生的确定性 ID")
    title: str = Field(description="Feed 标题")
    url: str = Field(unique=True, description="订阅源 URL")
    html_url: str | None = Field(default=None, description="网站首页 URL")
    description: str | None = Field(default=None, description="描述")
    image: str | None = Field(default=None, description="图标/封面")
    folder_id: str | None = Field(
        default=None, foreign_key="feed_folders.id", index=True, description="所属文件夹"
    )
    last_updated: str | None = Field(default=None, description="服务端声明的更新时间")
    last_published_at: str | None = Field(default=None, description="已知最新文章时间 (ISO)")
    last_published_ts: int | None = Field(default=None, description="已知最新文章时间 (ms)")
    expires_ts: int | None = Field(default=None, description="允许重新抓取的时间 (ms)")
    expires: str | None = Field(default=None, description="最近一次响应的 Expires 头")
    etag: str | None = Field(default=None, description="最近一次响应的 ETag 头")
    last_modified: str | None = Field(default=None, description="最近一次响应的 Last-Modified 头")
    created_at: int = Field(default_factory=lambda: int(time.time()))
