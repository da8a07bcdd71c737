"""测试 Fever 远程账户后端."""

import hashlib
import json
from collections.abc import Awaitable, Callable
from urllib.parse import parse_qs

import httpx
import pytest
from conftest import FakeServer

from pollen.core.coordinator import RefreshContext
from pollen.errors import AuthError, NetworkError, NotSupportedError
from pollen.models.database import Database
from pollen.reader.fever import FeverReaderStrategy, build_folder_map
from pollen.reader.fever_client import (
    FeverClient,
    build_form,
    ensure_auth,
    fever_api_key,
    parse_ids,
)
from pollen.reader.overlay import StatusOverlay

BASE_URL = "https://fever.example.com"
ENDPOINT = f"{BASE_URL}/api/fever.php"


class FeverServer:
    """模拟 Fever 服务端，按表单参数返回数据."""

    def __init__(self) -> None:
        self.auth = 1
        self.groups = [{"id": 1, "title": "Tech"}, {"id": 2, "title": "News"}]
        self.feeds = [
            {
                "id": 10,
                "title": "Alpha",
                "url": "https://alpha.example.com/rss",
                "site_url": "https://alpha.example.com/",
                "last_updated_on_time": 1_700_000_000,
            },
            {"id": 11, "title": "Beta", "url": "https://beta.example.com/rss"},
        ]
        self.feeds_groups = [
            {"group_id": 1, "feed_ids": "10,11"},
            {"group_id": 2, "feed_ids": "10"},
        ]
        self.items = [
            {
                "id": 100,
                "feed_id": 10,
                "title": "First",
                "url": "https://alpha.example.com/1",
                "html": '<p><img src="https://img/1.png"></p>',
                "created_on_time": 1_700_000_000,
                "is_read": 0,
                "is_saved": 0,
            },
            {
                "id": 101,
                "feed_id": 11,
                "title": "Second",
                "url": "https://beta.example.com/2",
                "html": "<p>text</p>",
                "created_on_time": 1_700_000_100,
                "is_read": 1,
                "is_saved": 1,
            },
        ]
        self.unread = "100"
        self.saved = "101"
        self.forms: list[dict[str, str]] = []
        self.fail_marks = False
        self.on_mark: Callable[[dict[str, str]], Awaitable[None]] | None = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.forms.append(form)
        body: dict = {"api_version": 3, "auth": self.auth}
        if self.auth == 0:
            return httpx.Response(200, json=body)

        if form.get("mark") == "item":
            if self.on_mark is not None:
                await self.on_mark(form)
            if self.fail_marks:
                return httpx.Response(500)
            return httpx.Response(200, json=body)

        if "groups" in form:
            body["groups"] = self.groups
        if "feeds" in form:
            body["feeds"] = self.feeds
        if "feeds_groups" in form:
            body["feeds_groups"] = self.feeds_groups
        if "items" in form:
            since_id = int(form.get("since_id", "0"))
            body["items"] = [i for i in self.items if i["id"] > since_id]
        if "unread_item_ids" in form:
            body["unread_item_ids"] = self.unread
        if "saved_item_ids" in form:
            body["saved_item_ids"] = self.saved
        return httpx.Response(200, json=body)

    def marks(self) -> list[tuple[str, str]]:
        return [(f["id"], f["as"]) for f in self.forms if f.get("mark") == "item"]


@pytest.fixture
def fever(server: FakeServer) -> FeverServer:
    fake = FeverServer()
    server.add_handler(ENDPOINT, fake)
    return fake


@pytest.fixture
def strategy(db: Database, http_client: httpx.AsyncClient) -> FeverReaderStrategy:
    client = FeverClient(BASE_URL, fever_api_key("user", "pass"), client=http_client)
    return FeverReaderStrategy("fever", db, client)


class TestFeverHelpers:
    """测试协议辅助函数."""

    def test_api_key(self) -> None:
        """md5("username:password")."""
        expected = hashlib.md5(b"user:pass").hexdigest()  # noqa: S324
        assert fever_api_key("user", "pass") == expected
        assert fever_api_key("user", "pass") != fever_api_key("user", "other")

    def test_build_form(self) -> None:
        """True 为 "1"，False/None 省略，数字转字符串."""
        assert build_form({"items": True, "since_id": 0, "feeds": False, "x": None}) == {
            "items": "1",
            "since_id": "0",
        }

    def test_parse_ids(self) -> None:
        """逗号分隔，忽略空白."""
        assert parse_ids("1, 2,,3 ") == {"1", "2", "3"}
        assert parse_ids("") == set()
        assert parse_ids(None) == set()

    def test_ensure_auth(self) -> None:
        """auth 为 0 时抛出 AuthError."""
        with pytest.raises(AuthError):
            ensure_auth({"auth": 0})
        assert ensure_auth({"auth": 1}) == {"auth": 1}

    def test_folder_map_first_wins(self) -> None:
        """订阅源属于多个分组时取第一个."""
        mapping = build_folder_map(
            [
                {"group_id": 1, "feed_ids": "10, 11"},
                {"group_id": 2, "feed_ids": "10"},
                {"group_id": 3, "feed_id": 12},
                {"group_id": 4, "feed_id": 12},
            ]
        )
        assert mapping == {"10": "1", "11": "1", "12": "3"}


class TestFeverClient:
    """测试 Fever 客户端."""

    async def test_request_form(
        self, http_client: httpx.AsyncClient, fever: FeverServer, server: FakeServer
    ) -> None:
        """POST 到 ?api，携带 api_key."""
        client = FeverClient(BASE_URL + "/", "key", client=http_client)
        data = await client.request(groups=True)

        request = server.requests[-1]
        assert request.method == "POST"
        assert str(request.url).startswith(ENDPOINT + "?api")
        assert fever.forms[-1] == {"api_key": "key", "groups": "1"}
        assert data["groups"][0]["title"] == "Tech"

    async def test_errors(self, http_client: httpx.AsyncClient, server: FakeServer) -> None:
        """非 2xx 和非 JSON 响应抛出 NetworkError."""
        client = FeverClient(BASE_URL, "key", client=http_client)

        server.add(ENDPOINT, "oops", status_code=502)
        with pytest.raises(NetworkError):
            await client.request(groups=True)

        server.add(ENDPOINT, "<html>not json</html>")
        with pytest.raises(NetworkError):
            await client.request(groups=True)

        server.add(ENDPOINT, json.dumps([1, 2]))
        with pytest.raises(NetworkError):
            await client.request(groups=True)


class TestFeverRefresh:
    """测试同步."""

    async def test_refresh_upserts_and_reconciles(
        self, strategy: FeverReaderStrategy, fever: FeverServer
    ) -> None:
        """写入分组、订阅源、文章并按 ID 集合对账."""
        result = await strategy.refresh(RefreshContext(reason="manual"))

        assert result.new_articles_count == 2
        assert {f.id for f in result.feeds_used} == {"10", "11"}

        hydrated = await strategy.hydrate()
        assert [(f.id, f.title) for f in hydrated.folders] == [("2", "News"), ("1", "Tech")]
        folders = {f.id: f.folder_id for f in hydrated.feeds}
        assert folders == {"10": "1", "11": "1"}

        first = await strategy.articles.get("100")
        second = await strategy.articles.get("101")
        assert first is not None
        assert second is not None
        assert (first.read, first.saved) == (False, False)
        assert (second.read, second.saved) == (True, True)
        assert first.thumbnail == "https://img/1.png"
        assert first.source == "Alpha"
        assert first.published_at == "2023-11-14T22:13:20Z"

    async def test_incremental_since_id(
        self, strategy: FeverReaderStrategy, fever: FeverServer
    ) -> None:
        """第二次同步从已缓存的最大 ID 开始，状态全部以服务端为准."""
        await strategy.refresh(RefreshContext(reason="manual"))
        fever.unread = ""
        fever.saved = "100"

        result = await strategy.refresh(RefreshContext(reason="background"))

        items_forms = [f for f in fever.forms if "items" in f]
        assert items_forms[0]["since_id"] == "0"
        assert items_forms[-1]["since_id"] == "101"
        assert result.new_articles_count == 0

        first = await strategy.articles.get("100")
        second = await strategy.articles.get("101")
        assert first is not None
        assert second is not None
        assert (first.read, first.saved) == (True, True)
        assert (second.read, second.saved) == (True, False)

    async def test_auth_failure_aborts(
        self, strategy: FeverReaderStrategy, fever: FeverServer
    ) -> None:
        """认证失败时不写入任何数据."""
        fever.auth = 0

        with pytest.raises(AuthError):
            await strategy.refresh(RefreshContext(reason="manual"))

        hydrated = await strategy.hydrate()
        assert hydrated.feeds == []
        assert hydrated.folders == []


class TestFeverMutations:
    """测试状态修改."""

    async def test_set_read_writes_remote_first(
        self, strategy: FeverReaderStrategy, fever: FeverServer
    ) -> None:
        """远端确认前读取看到待写入状态，确认后写入本地."""
        await strategy.refresh(RefreshContext(reason="manual"))
        observed: list[bool] = []

        async def on_mark(form: dict[str, str]) -> None:
            article = await strategy.articles.get(form["id"])
            stored = await strategy.article_store.get(form["id"])
            assert article is not None
            assert stored is not None
            observed.extend([article.read, stored.read])

        fever.on_mark = on_mark
        await strategy.articles.set_read("100", True)

        assert observed == [True, False]
        assert fever.marks() == [("100", "read")]
        article = await strategy.articles.get("100")
        assert article is not None
        assert article.read is True
        assert len(strategy.articles.overlay) == 0

    async def test_remote_failure_leaves_local_unchanged(
        self, strategy: FeverReaderStrategy, fever: FeverServer
    ) -> None:
        """远端失败时抛出异常，本地状态不变."""
        await strategy.refresh(RefreshContext(reason="manual"))
        fever.fail_marks = True

        with pytest.raises(NetworkError):
            await strategy.articles.set_saved("100", True)

        article = await strategy.articles.get("100")
        assert article is not None
        assert article.saved is False
        assert len(strategy.articles.overlay) == 0

    async def test_set_all_read_marks_each_unread(
        self, strategy: FeverReaderStrategy, fever: FeverServer
    ) -> None:
        """全部已读逐条标记未读文章."""
        await strategy.refresh(RefreshContext(reason="manual"))

        await strategy.articles.set_all_read()

        assert fever.marks() == [("100", "read")]
        assert await strategy.articles.get_unread_count() == 0

    async def test_feed_and_folder_crud_not_supported(
        self, strategy: FeverReaderStrategy
    ) -> None:
        """订阅源和分组管理明确报不支持."""
        with pytest.raises(NotSupportedError):
            await strategy.feeds.add("https://example.com/feed.xml")
        with pytest.raises(NotSupportedError):
            await strategy.feeds.remove("10")
        with pytest.raises(NotSupportedError):
            await strategy.feeds.upsert([])
        with pytest.raises(NotSupportedError):
            await strategy.folders.create("New")
        with pytest.raises(NotSupportedError):
            await strategy.folders.rename("1", "x")
        with pytest.raises(NotSupportedError):
            await strategy.folders.delete("1")
        with pytest.raises(NotSupportedError):
            await strategy.folders.set_feed_folder("10", None)
        with pytest.raises(NotSupportedError):
            await strategy.import_opml("<opml/>")


class TestStatusOverlay:
    """测试状态覆盖层."""

    def test_nested_pending_keeps_newer_value(self) -> None:
        """旧的撤销不会抹掉同一篇文章更新的覆盖值."""
        overlay = StatusOverlay()
        outer = overlay.pending(["1"], read=True)
        outer.__enter__()
        with overlay.pending(["1"], read=False):
            assert overlay.get("1") == {"read": False}
            outer.__exit__(None, None, None)
            assert overlay.get("1") == {"read": False}
        assert overlay.get("1") == {}
        assert len(overlay) == 0

    def test_unknown_field(self) -> None:
        """只允许 read 和 saved."""
        overlay = StatusOverlay()
        with pytest.raises(ValueError), overlay.pending(["1"], starred=True):
            pass
