"""测试后台刷新任务."""

import asyncio
from datetime import timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pollen.config import Settings
from pollen.core.refresh import RefreshResult
from pollen.models.database import Database
from pollen.scheduler.background import (
    MARKER_KEY,
    TASK_NAME,
    BackgroundFetchResult,
    BackgroundRefreshTask,
    register,
)
from pollen.store.settings import SettingStore


@pytest.fixture
def setting_store(db: Database) -> SettingStore:
    return SettingStore(db)


def _task(setting_store: SettingStore, *results: RefreshResult | Exception | None):
    calls: list[int] = []
    queue = list(results)

    async def refresh_fn() -> RefreshResult | None:
        calls.append(1)
        result = queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    return BackgroundRefreshTask(refresh_fn, setting_store), calls


class TestBackgroundRun:
    """测试单次执行."""

    async def test_new_data_sets_marker(self, setting_store: SettingStore) -> None:
        """发现新文章时写入标记，前台读取一次后清除."""
        task, _ = _task(setting_store, RefreshResult(new_articles_count=4))

        assert await task.run() == BackgroundFetchResult.NEW_DATA

        marker = await task.consume_marker()
        assert marker is not None
        assert marker.count == 4
        assert marker.timestamp > 0
        assert await task.consume_marker() is None

    async def test_no_data_clears_marker(self, setting_store: SettingStore) -> None:
        """没有新文章时清除旧标记."""
        task, _ = _task(
            setting_store, RefreshResult(new_articles_count=2), RefreshResult(), None
        )
        await task.run()

        assert await task.run() == BackgroundFetchResult.NO_DATA
        assert await setting_store.get(MARKER_KEY) is None
        assert await task.run() == BackgroundFetchResult.NO_DATA

    async def test_failure(self, setting_store: SettingStore) -> None:
        """刷新异常返回 FAILED，不向调度器抛出."""
        task, _ = _task(setting_store, RuntimeError("boom"))
        assert await task.run() == BackgroundFetchResult.FAILED
        assert not task.running

    async def test_reentrant_call_skipped(self, setting_store: SettingStore) -> None:
        """已有实例在运行时直接返回 NO_DATA."""
        gate = asyncio.Event()
        calls: list[int] = []

        async def slow_refresh() -> RefreshResult:
            calls.append(1)
            await gate.wait()
            return RefreshResult(new_articles_count=1)

        task = BackgroundRefreshTask(slow_refresh, setting_store)
        first = asyncio.create_task(task.run())
        await asyncio.sleep(0)
        assert task.running

        assert await task.run() == BackgroundFetchResult.NO_DATA
        gate.set()
        assert await first == BackgroundFetchResult.NEW_DATA
        assert calls == [1]

    async def test_invalid_marker_discarded(self, setting_store: SettingStore) -> None:
        """无法解析的标记被清除."""
        task, _ = _task(setting_store)
        await setting_store.set(MARKER_KEY, "not json")

        assert await task.consume_marker() is None
        assert await setting_store.get(MARKER_KEY) is None

    async def test_zero_marker_ignored(self, setting_store: SettingStore) -> None:
        """数量为 0 的标记视为没有."""
        task, _ = _task(setting_store)
        await setting_store.set(MARKER_KEY, '{"count": 0, "timestamp": 1}')
        assert await task.consume_marker() is None


class TestRegister:
    """测试调度注册."""

    async def test_register_once_with_min_interval(
        self, setting_store: SettingStore, settings: Settings
    ) -> None:
        """间隔最少 30 分钟，重复注册无效."""
        scheduler = AsyncIOScheduler()
        task, _ = _task(setting_store)
        configured = settings.model_copy(update={"background_interval_minutes": 5})

        assert register(scheduler, task, configured) is True
        assert register(scheduler, task, configured) is False

        job = scheduler.get_job(TASK_NAME)
        assert job is not None
        assert job.trigger.interval == timedelta(minutes=30)
        assert job.max_instances == 1
        assert job.coalesce is True

    async def test_longer_interval_kept(
        self, setting_store: SettingStore, settings: Settings
    ) -> None:
        """配置的间隔大于下限时按配置."""
        scheduler = AsyncIOScheduler()
        task, _ = _task(setting_store)
        configured = settings.model_copy(update={"background_interval_minutes": 90})

        register(scheduler, task, configured)

        assert scheduler.get_job(TASK_NAME).trigger.interval == timedelta(minutes=90)

    async def test_disabled(self, setting_store: SettingStore, settings: Settings) -> None:
        """未启用时不注册."""
        scheduler = AsyncIOScheduler()
        task, _ = _task(setting_store)
        disabled = settings.model_copy(update={"background_refresh_enabled": False})

        assert register(scheduler, task, disabled) is False
        assert scheduler.get_job(TASK_NAME) is None
