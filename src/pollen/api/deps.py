"""API 依赖：应用级服务容器."""

from dataclasses import dataclass, field

import httpx
from fastapi import Depends, Request

from pollen.config import Settings, get_settings
from pollen.core.coordinator import RefreshContext, RefreshCoordinator
from pollen.core.refresh import RefreshResult
from pollen.core.save_for_later import SaveForLater
from pollen.fetcher.reader_mode import ReaderModeExtractor
from pollen.models.database import get_database
from pollen.reader.base import ReaderStrategy
from pollen.reader.registry import DatabaseFactory, ReaderRegistry
from pollen.scheduler.background import BackgroundRefreshTask
from pollen.store.settings import SettingStore


@dataclass
class Services:
    """应用运行期间共享的服务."""

    settings: Settings
    registry: ReaderRegistry
    coordinator: RefreshCoordinator
    background: BackgroundRefreshTask
    reader_mode: ReaderModeExtractor
    http_client: httpx.AsyncClient
    savers: dict[str, SaveForLater] = field(default_factory=dict)

    def saver_for(self, strategy: ReaderStrategy) -> SaveForLater:
        """账户对应的稍后阅读服务，后台补全任务由它持有."""
        saver = self.savers.get(strategy.account_id)
        if saver is None or saver.articles is not strategy.articles:
            saver = SaveForLater(strategy.articles, self.http_client)
            self.savers[strategy.account_id] = saver
        return saver

    async def close(self) -> None:
        """释放网络客户端和后端实例."""
        for saver in self.savers.values():
            await saver.wait_pending()
        await self.registry.close()
        await self.reader_mode.close()
        await self.http_client.aclose()


async def build_services(
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    database_factory: DatabaseFactory = get_database,
) -> Services:
    """按配置组装服务."""
    settings = settings or get_settings()
    http_client = http_client or httpx.AsyncClient(
        timeout=settings.feed_timeout_seconds,
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
    )
    registry = ReaderRegistry.from_settings(
        settings,
        database_factory=database_factory,
        http_client=http_client,
        seed_defaults=True,
    )
    coordinator = RefreshCoordinator(
        registry.refresh, stale_ms=settings.foreground_stale_minutes * 60 * 1000
    )

    async def background_refresh() -> RefreshResult | None:
        return await coordinator.refresh(RefreshContext(reason="background"))

    background = BackgroundRefreshTask(
        background_refresh, SettingStore(await database_factory(None))
    )
    return Services(
        settings=settings,
        registry=registry,
        coordinator=coordinator,
        background=background,
        reader_mode=ReaderModeExtractor(client=http_client, settings=settings),
        http_client=http_client,
    )


def get_services(request: Request) -> Services:
    """从应用状态取服务容器."""
    return request.app.state.services


async def get_strategy(services: Services = Depends(get_services)) -> ReaderStrategy:
    """当前账户的阅读后端."""
    return await services.registry.active()
