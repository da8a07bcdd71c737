"""测试账户注册表."""

from collections.abc import AsyncGenerator
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from conftest import FakeServer

from pollen.config import Settings
from pollen.core.coordinator import RefreshContext, RefreshCoordinator
from pollen.errors import AuthError
from pollen.models.database import Database, database_url_for_key
from pollen.reader.fever import FeverReaderStrategy
from pollen.reader.fever_client import fever_api_key
from pollen.reader.local import LocalReaderStrategy
from pollen.reader.registry import (
    FeverAccount,
    LocalAccount,
    ReaderRegistry,
    fever_account_from_settings,
)

FEVER_ENDPOINT = "https://fever.example.com/api/fever.php"


class DatabasePool:
    """按 db_key 在临时目录创建数据库，并记录请求过的 key."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.databases: dict[str | None, Database] = {}

    async def __call__(self, db_key: str | None) -> Database:
        db = self.databases.get(db_key)
        if db is None:
            db = Database(database_url_for_key(str(self.data_dir), db_key))
            await db.init()
            self.databases[db_key] = db
        return db

    async def dispose(self) -> None:
        for db in self.databases.values():
            await db.dispose()


@pytest_asyncio.fixture
async def pool(tmp_path: Path) -> AsyncGenerator[DatabasePool, None]:
    databases = DatabasePool(tmp_path)
    yield databases
    await databases.dispose()


@pytest_asyncio.fixture
async def registry(
    settings: Settings, pool: DatabasePool, http_client: httpx.AsyncClient
) -> AsyncGenerator[ReaderRegistry, None]:
    reg = ReaderRegistry(settings=settings, database_factory=pool, http_client=http_client)
    yield reg
    await reg.close()


def _fever(account_id: str = "fever", db_key: str = "fever-test") -> FeverAccount:
    return FeverAccount(
        id=account_id,
        base_url="https://fever.example.com",
        api_key="key",
        db_key=db_key,
    )


class TestAccounts:
    """测试账户管理."""

    async def test_default_local(self, registry: ReaderRegistry) -> None:
        """默认只有本地账户."""
        assert registry.active_account == LocalAccount()
        assert isinstance(await registry.active(), LocalReaderStrategy)

    async def test_set_active_unknown(self, registry: ReaderRegistry) -> None:
        """切换到不存在的账户抛出 ValueError."""
        with pytest.raises(ValueError, match="账户不存在"):
            registry.set_active("nope")

    async def test_remove_account(self, registry: ReaderRegistry) -> None:
        """删除当前账户后回到本地账户，本地账户不可删除."""
        registry.add_account(_fever())
        registry.set_active("fever")
        assert isinstance(await registry.active(), FeverReaderStrategy)

        await registry.remove_account("fever")

        assert registry.active_account_id == "local"
        assert [a.id for a in registry.accounts] == ["local"]
        with pytest.raises(ValueError):
            await registry.remove_account("local")


class TestStrategies:
    """测试后端缓存."""

    async def test_cached_per_account(
        self, registry: ReaderRegistry, pool: DatabasePool
    ) -> None:
        """同一账户复用实例，不同账户使用各自的数据库."""
        registry.add_account(_fever())
        local = await registry.get_strategy(LocalAccount())
        fever = await registry.get_strategy(_fever())

        assert await registry.get_strategy(LocalAccount()) is local
        assert await registry.get_strategy(_fever()) is fever
        assert local.db is not fever.db
        assert set(pool.databases) == {None, "fever-test"}

    async def test_rebuilt_when_kind_changes(self, registry: ReaderRegistry) -> None:
        """同一 ID 的账户类型变化时重建后端."""
        fever = await registry.get_strategy(_fever(account_id="shared"))
        assert isinstance(fever, FeverReaderStrategy)

        local = await registry.get_strategy(LocalAccount(id="shared"))

        assert isinstance(local, LocalReaderStrategy)
        assert local is not fever

    async def test_refresh_uses_active(
        self, registry: ReaderRegistry, server: FakeServer
    ) -> None:
        """刷新走当前账户的后端."""
        server.add(
            "https://fever.example.com/api/fever.php",
            '{"api_version": 3, "auth": 0}',
            headers={"Content-Type": "application/json"},
        )
        registry.add_account(_fever())
        registry.set_active("fever")

        with pytest.raises(AuthError):
            await registry.refresh(RefreshContext(reason="manual"))

    async def test_auth_failure_blocks_until_manual(
        self, registry: ReaderRegistry, server: FakeServer
    ) -> None:
        """Fever 认证失败后自动刷新不再请求服务端，手动刷新恢复."""
        state = {"auth": 0}

        def fever(request: httpx.Request) -> httpx.Response:
            body = {"api_version": 3, "auth": state["auth"]}
            if state["auth"]:
                body.update(
                    groups=[],
                    feeds=[{"id": 1, "title": "Alpha", "url": "https://alpha.example.com/rss"}],
                    feeds_groups=[],
                    items=[],
                    unread_item_ids="",
                    saved_item_ids="",
                )
            return httpx.Response(200, json=body)

        server.add_handler(FEVER_ENDPOINT, fever)
        registry.add_account(_fever())
        registry.set_active("fever")
        coordinator = RefreshCoordinator(registry.refresh)

        with pytest.raises(AuthError):
            await coordinator.refresh(RefreshContext(reason="background"))
        assert coordinator.blocked_until_manual is True
        assert coordinator.status == "error"

        sent = len(server.calls(FEVER_ENDPOINT, "POST"))
        assert sent > 0
        assert await coordinator.refresh(RefreshContext(reason="foreground")) is None
        assert await coordinator.refresh(RefreshContext(reason="background")) is None
        assert len(server.calls(FEVER_ENDPOINT, "POST")) == sent

        state["auth"] = 1
        result = await coordinator.refresh(RefreshContext(reason="manual"))

        assert result is not None
        assert [f.title for f in result.feeds_used] == ["Alpha"]
        assert coordinator.blocked_until_manual is False
        assert coordinator.status == "idle"
        assert len(server.calls(FEVER_ENDPOINT, "POST")) > sent


class TestFromSettings:
    """测试从配置构造."""

    def test_fever_account(self, settings: Settings) -> None:
        """配置了 Fever 地址时注册账户，密钥由用户名和密码派生."""
        configured = settings.model_copy(
            update={
                "fever_url": "https://rss.example.com",
                "fever_username": "me",
                "fever_api_password": "secret",
                "active_account": "fever",
            }
        )
        account = fever_account_from_settings(configured)
        assert account is not None
        assert account.api_key == fever_api_key("me", "secret")
        assert account.db_key.startswith("fever-")

        registry = ReaderRegistry.from_settings(configured)
        assert registry.active_account_id == "fever"

    def test_not_configured(self, settings: Settings) -> None:
        """没有 Fever 地址时只有本地账户."""
        assert fever_account_from_settings(settings) is None
        registry = ReaderRegistry.from_settings(
            settings.model_copy(update={"active_account": "fever"})
        )
        assert registry.active_account_id == "local"
