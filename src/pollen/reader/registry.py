"""阅读账户注册表：按账户缓存后端实例."""

import logging
from collections.abc import Awaitable, Callable
from typing import Literal

import httpx
from pydantic import BaseModel

from pollen.config import Settings, get_settings
from pollen.core.coordinator import RefreshContext
from pollen.core.refresh import RefreshResult
from pollen.fetcher.client import FeedFetcher
from pollen.models.database import Database, get_database
from pollen.reader.base import ReaderStrategy
from pollen.reader.fever import FeverReaderStrategy
from pollen.reader.fever_client import FeverClient, fever_api_key
from pollen.reader.local import LOCAL_ACCOUNT_ID, LocalReaderStrategy
from pollen.utils.ids import derive_id

logger = logging.getLogger(__name__)

DatabaseFactory = Callable[[str | None], Awaitable[Database]]


class LocalAccount(BaseModel):
    """本地账户."""

    id: str = LOCAL_ACCOUNT_ID
    kind: Literal["local"] = "local"


class FeverAccount(BaseModel):
    """Fever 远程账户."""

    id: str
    kind: Literal["fever"] = "fever"
    base_url: str
    api_key: str
    db_key: str  # 数据库文件命名空间，每个账户独立缓存


ReaderAccount = LocalAccount | FeverAccount


def fever_account_from_settings(settings: Settings) -> FeverAccount | None:
    """从配置构造 Fever 账户，未配置返回 None."""
    if not settings.fever_url:
        return None
    api_key = settings.fever_api_key or fever_api_key(
        settings.fever_username, settings.fever_api_password
    )
    return FeverAccount(
        id="fever",
        base_url=settings.fever_url,
        api_key=api_key,
        db_key=f"fever-{derive_id(f'{settings.fever_username}@{settings.fever_url}')}",
    )


class ReaderRegistry:
    """
    账户与后端实例管理.

    后端实例按账户 ID 缓存，账户类型变化时重建；当前账户不存在时回退到
    本地账户。
    """

    def __init__(
        self,
        settings: Settings | None = None,
        database_factory: DatabaseFactory = get_database,
        http_client: httpx.AsyncClient | None = None,
        seed_defaults: bool = False,
    ) -> None:
        self.settings = settings or get_settings()
        self._database_factory = database_factory
        self._http_client = http_client
        self._seed_defaults = seed_defaults
        self._accounts: dict[str, ReaderAccount] = {LOCAL_ACCOUNT_ID: LocalAccount()}
        self._strategies: dict[str, ReaderStrategy] = {}
        self.active_account_id = LOCAL_ACCOUNT_ID

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, **kwargs: object
    ) -> "ReaderRegistry":
        """按配置注册 Fever 账户并选择当前账户."""
        settings = settings or get_settings()
        registry = cls(settings=settings, **kwargs)  # type: ignore[arg-type]
        account = fever_account_from_settings(settings)
        if account is not None:
            registry.add_account(account)
        if settings.active_account in registry._accounts:
            registry.active_account_id = settings.active_account
        return registry

    @property
    def accounts(self) -> list[ReaderAccount]:
        return list(self._accounts.values())

    @property
    def active_account(self) -> ReaderAccount:
        return self._accounts.get(self.active_account_id) or LocalAccount()

    def add_account(self, account: ReaderAccount) -> None:
        """添加或替换账户."""
        self._accounts[account.id] = account

    def set_active(self, account_id: str) -> None:
        """切换当前账户."""
        if account_id not in self._accounts:
            msg = f"账户不存在: {account_id}"
            raise ValueError(msg)
        self.active_account_id = account_id
        logger.info(f"切换到账户 {account_id}")

    async def remove_account(self, account_id: str) -> None:
        """删除账户并释放其后端实例，本地账户不可删除."""
        if account_id == LOCAL_ACCOUNT_ID:
            msg = "不能删除本地账户"
            raise ValueError(msg)
        self._accounts.pop(account_id, None)
        strategy = self._strategies.pop(account_id, None)
        if strategy is not None:
            await strategy.close()
        if self.active_account_id == account_id:
            self.active_account_id = LOCAL_ACCOUNT_ID

    async def get_strategy(self, account: ReaderAccount) -> ReaderStrategy:
        """获取账户对应的后端，必要时创建."""
        cached = self._strategies.get(account.id)
        if cached is not None and cached.kind == account.kind:
            return cached
        if cached is not None:
            await cached.close()

        strategy = await self._build(account)
        self._strategies[account.id] = strategy
        return strategy

    async def _build(self, account: ReaderAccount) -> ReaderStrategy:
        if isinstance(account, FeverAccount):
            db = await self._database_factory(account.db_key)
            client = FeverClient(
                account.base_url,
                account.api_key,
                client=self._http_client,
                timeout=self.settings.feed_timeout_seconds,
            )
            return FeverReaderStrategy(account.id, db, client)

        db = await self._database_factory(None)
        fetcher = FeedFetcher(client=self._http_client, settings=self.settings)
        return LocalReaderStrategy(
            db, fetcher=fetcher, settings=self.settings, seed_defaults=self._seed_defaults
        )

    async def active(self) -> ReaderStrategy:
        """当前账户的后端."""
        return await self.get_strategy(self.active_account)

    async def refresh(self, context: RefreshContext) -> RefreshResult:
        """用当前账户刷新，供 :class:`RefreshCoordinator` 调用."""
        strategy = await self.active()
        return await strategy.refresh(context)

    async def close(self) -> None:
        """释放全部后端实例."""
        for strategy in self._strategies.values():
            await strategy.close()
        self._strategies.clear()
