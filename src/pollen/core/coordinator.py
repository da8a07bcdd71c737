"""刷新协调：共享进行中的刷新、前台节流和失败熔断."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pollen.core.refresh import RefreshResult
from pollen.utils.timeutil import now_ms

logger = logging.getLogger(__name__)

FOREGROUND_STALE_MS = 5 * 60 * 1000

REFRESH_REASONS = ("manual", "foreground", "background")


@dataclass
class RefreshContext:
    """刷新触发上下文."""

    reason: str = "foreground"  # manual | foreground | background
    selected_feed_id: str | None = None

    def __post_init__(self) -> None:
        if self.reason not in REFRESH_REASONS:
            msg = f"未知的刷新原因: {self.reason}"
            raise ValueError(msg)


RefreshFn = Callable[[RefreshContext], Awaitable[RefreshResult]]


class RefreshCoordinator:
    """
    应用内唯一的刷新入口.

    - 已有刷新在进行时，后来的调用共享同一个任务的结果
    - 上次刷新失败后进入熔断，只有手动刷新可以解除
    - 前台刷新在上次成功后的节流窗口内直接跳过
    """

    def __init__(
        self,
        refresh_fn: RefreshFn,
        stale_ms: int = FOREGROUND_STALE_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._refresh_fn = refresh_fn
        self._stale_ms = stale_ms
        self._clock = clock
        self._task: asyncio.Task[RefreshResult] | None = None

        self.status = "idle"  # idle | loading | error
        self.last_refresh_at: int | None = None
        self.last_error: str | None = None
        self.blocked_until_manual = False

    @property
    def in_flight(self) -> bool:
        return self._task is not None

    async def refresh(self, context: RefreshContext) -> RefreshResult | None:
        """
        按上下文触发刷新.

        Returns:
            RefreshResult | None: 被节流或熔断跳过时返回 None

        Raises:
            Exception: 刷新失败时原样抛出，并进入熔断状态
        """
        if self._task is not None:
            return await asyncio.shield(self._task)

        if self.blocked_until_manual and context.reason != "manual":
            logger.debug(f"上次刷新失败，跳过 {context.reason} 刷新")
            return None

        if (
            context.reason == "foreground"
            and self.last_refresh_at
            and self._clock() - self.last_refresh_at < self._stale_ms
        ):
            return None

        self.status = "loading"
        self.last_error = None
        self.blocked_until_manual = False

        self._task = asyncio.create_task(self._run(context))
        return await asyncio.shield(self._task)

    async def _run(self, context: RefreshContext) -> RefreshResult:
        try:
            result = await self._refresh_fn(context)
        except Exception as e:
            self.status = "error"
            self.last_error = str(e) or "刷新失败"
            self.blocked_until_manual = True
            logger.warning(f"刷新失败 ({context.reason})，等待手动刷新: {e}")
            raise
        finally:
            self._task = None

        self.status = "idle" if result.feeds_used else "error"
        self.last_refresh_at = self._clock()
        self.blocked_until_manual = False
        return result
