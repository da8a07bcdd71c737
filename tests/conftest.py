"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from pollen.config import Settings
from pollen.fetcher.client import FeedFetcher
from pollen.models.database import Database
from pollen.store.articles import ArticleStore
from pollen.store.feeds import FeedStore
from pollen.store.folders import FolderStore

Handler = Callable[[httpx.Request], httpx.Response]


def rss_document(items: list[dict], title: str = "Test Feed", extra: str = "") -> str:
    """构造 RSS 2.0 文档，items 中的键：guid、title、link、pub_date、description."""
    parts = []
    for item in items:
        fields = []
        if "guid" in item:
            fields.append(f"<guid>{item['guid']}</guid>")
        if "title" in item:
            fields.append(f"<title>{item['title']}</title>")
        if "link" in item:
            fields.append(f"<link>{item['link']}</link>")
        if "pub_date" in item:
            fields.append(f"<pubDate>{item['pub_date']}</pubDate>")
        if "description" in item:
            fields.append(f"<description>{item['description']}</description>")
        fields.append(item.get("extra", ""))
        parts.append(f"<item>{''.join(fields)}</item>")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/" '
        'xmlns:content="http://purl.org/rss/1.0/modules/content/" '
        'xmlns:sy="http://purl.org/rss/1.0/modules/syndication/">'
        f"<channel><title>{title}</title><link>https://example.com/</link>"
        f"<description>Feed description</description>{extra}"
        f"{''.join(parts)}</channel></rss>"
    )


class FakeServer:
    """按 URL 返回预设响应的 httpx MockTransport，并记录请求."""

    def __init__(self) -> None:
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        body: str | bytes = "",
        status_code: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, content=body, headers=headers or {})

        self.routes[url] = handler

    def add_handler(self, url: str, handler: Handler) -> None:
        self.routes[url] = handler

    def calls(self, url: str, method: str = "GET") -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and str(r.url).split("?")[0] == url
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?")[0]
        handler = self.routes.get(url)
        if handler is None:
            return httpx.Response(404)
        return handler(request)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """测试配置：数据库放在临时目录，不读 .env."""
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path),
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'pollen.db'}",
        metadata_budget=0,
    )


@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """每个测试一个独立的 SQLite 文件."""
    database = Database(settings.database_url)
    await database.init()
    yield database
    await database.dispose()


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def http_client(server: FakeServer) -> AsyncGenerator[httpx.AsyncClient, None]:
    """走 FakeServer 的 httpx 客户端."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
        yield client


@pytest.fixture
def fetcher(http_client: httpx.AsyncClient, settings: Settings) -> FeedFetcher:
    return FeedFetcher(client=http_client, settings=settings)


@pytest.fixture
def article_store(db: Database) -> ArticleStore:
    return ArticleStore(db)


@pytest.fixture
def feed_store(db: Database) -> FeedStore:
    return FeedStore(db)


@pytest.fixture
def folder_store(db: Database) -> FolderStore:
    return FolderStore(db)
