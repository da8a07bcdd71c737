"""后台刷新任务及新文章标记."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import BaseModel, ValidationError

from pollen.config import Settings, get_settings
from pollen.core.refresh import RefreshResult
from pollen.store.settings import SettingStore
from pollen.utils.timeutil import now_ms

logger = logging.getLogger(__name__)

TASK_NAME = "background-refresh-task"
MARKER_KEY = "background-new-articles-v1"
MIN_INTERVAL_MINUTES = 30


class BackgroundFetchResult(str, Enum):
    """后台任务结果."""

    NEW_DATA = "new_data"
    NO_DATA = "no_data"
    FAILED = "failed"


class BackgroundMarker(BaseModel):
    """后台刷新发现的新文章，前台启动时读取一次."""

    count: int
    timestamp: int


BackgroundRefreshFn = Callable[[], Awaitable[RefreshResult | None]]


class BackgroundRefreshTask:
    """
    后台刷新.

    同一时间只运行一个实例，重入的调用直接返回 ``NO_DATA``。
    """

    def __init__(self, refresh_fn: BackgroundRefreshFn, settings_store: SettingStore) -> None:
        self._refresh_fn = refresh_fn
        self._settings_store = settings_store
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self) -> BackgroundFetchResult:
        """执行一次后台刷新."""
        if self._lock.locked():
            logger.info("后台刷新已在运行，跳过本次调度")
            return BackgroundFetchResult.NO_DATA

        async with self._lock:
            try:
                result = await self._refresh_fn()
                count = result.new_articles_count if result else 0
                await self._set_marker(count)
            except Exception as e:
                logger.exception(f"后台刷新失败: {e}")
                return BackgroundFetchResult.FAILED

        if count > 0:
            logger.info(f"后台刷新发现 {count} 篇新文章")
            return BackgroundFetchResult.NEW_DATA
        return BackgroundFetchResult.NO_DATA

    async def _set_marker(self, count: int) -> None:
        if not count:
            await self._settings_store.delete(MARKER_KEY)
            return
        marker = BackgroundMarker(count=count, timestamp=now_ms())
        await self._settings_store.set(MARKER_KEY, marker.model_dump_json())

    async def consume_marker(self) -> BackgroundMarker | None:
        """读取并清除新文章标记，标记无效时同样清除."""
        raw = await self._settings_store.get(MARKER_KEY)
        await self._settings_store.delete(MARKER_KEY)
        if not raw:
            return None
        try:
            marker = BackgroundMarker.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"后台标记无法解析，已清除: {raw!r}")
            return None
        return marker if marker.count else None


def register(
    scheduler: AsyncIOScheduler,
    task: BackgroundRefreshTask,
    settings: Settings | None = None,
) -> bool:
    """
    注册后台刷新任务.

    未启用后台刷新或任务已注册时不做任何事；间隔最少 30 分钟。

    Returns:
        bool: 本次是否新注册了任务
    """
    settings = settings or get_settings()
    if not settings.background_refresh_enabled:
        logger.warning("后台刷新不可用，跳过注册")
        return False

    if scheduler.get_job(TASK_NAME) is not None:
        return False

    interval = max(settings.background_interval_minutes, MIN_INTERVAL_MINUTES)
    scheduler.add_job(
        task.run,
        "interval",
        minutes=interval,
        id=TASK_NAME,
        name="后台刷新订阅源",
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"后台刷新已注册，间隔 {interval} 分钟")
    return True
