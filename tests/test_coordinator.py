"""测试刷新协调器."""

import asyncio

import pytest

from pollen.core.coordinator import RefreshContext, RefreshCoordinator
from pollen.core.refresh import RefreshResult
from pollen.errors import NetworkError
from pollen.models.feed import Feed

FEED = Feed(id="f", title="Feed", url="https://example.com/feed.xml")


class FakeClock:
    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class RecordingRefresh:
    """记录调用次数，可设置为失败或阻塞."""

    def __init__(self) -> None:
        self.calls: list[RefreshContext] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.result = RefreshResult(feeds_used=[FEED], new_articles_count=3)

    async def __call__(self, context: RefreshContext) -> RefreshResult:
        self.calls.append(context)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def refresh_fn() -> RecordingRefresh:
    return RecordingRefresh()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def coordinator(refresh_fn: RecordingRefresh, clock: FakeClock) -> RefreshCoordinator:
    return RefreshCoordinator(refresh_fn, stale_ms=60_000, clock=clock)


class TestSharedInFlight:
    """测试并发调用共享同一次刷新."""

    async def test_concurrent_calls_share_result(
        self, coordinator: RefreshCoordinator, refresh_fn: RecordingRefresh
    ) -> None:
        """进行中的刷新被后来的调用复用."""
        refresh_fn.gate = asyncio.Event()

        first = asyncio.create_task(coordinator.refresh(RefreshContext(reason="manual")))
        await asyncio.sleep(0)
        assert coordinator.in_flight
        assert coordinator.status == "loading"
        second = asyncio.create_task(coordinator.refresh(RefreshContext(reason="background")))
        await asyncio.sleep(0)

        refresh_fn.gate.set()
        results = await asyncio.gather(first, second)

        assert len(refresh_fn.calls) == 1
        assert results[0] is results[1]
        assert not coordinator.in_flight
        assert coordinator.status == "idle"

    async def test_cancelled_waiter_does_not_cancel_refresh(
        self, coordinator: RefreshCoordinator, refresh_fn: RecordingRefresh
    ) -> None:
        """等待方被取消时刷新继续进行."""
        refresh_fn.gate = asyncio.Event()
        waiter = asyncio.create_task(coordinator.refresh(RefreshContext(reason="manual")))
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert coordinator.in_flight

        refresh_fn.gate.set()
        result = await coordinator.refresh(RefreshContext(reason="manual"))
        assert result is refresh_fn.result
        assert len(refresh_fn.calls) == 1


class TestThrottle:
    """测试前台节流."""

    async def test_foreground_within_window_skipped(
        self,
        coordinator: RefreshCoordinator,
        refresh_fn: RecordingRefresh,
        clock: FakeClock,
    ) -> None:
        """上次成功后窗口内的前台刷新被跳过，手动刷新不受影响."""
        await coordinator.refresh(RefreshContext(reason="manual"))
        assert coordinator.last_refresh_at == clock.now

        clock.now += 30_000
        assert await coordinator.refresh(RefreshContext()) is None
        assert len(refresh_fn.calls) == 1

        await coordinator.refresh(RefreshContext(reason="manual"))
        assert len(refresh_fn.calls) == 2

        clock.now += 60_000
        assert await coordinator.refresh(RefreshContext()) is refresh_fn.result
        assert len(refresh_fn.calls) == 3

    async def test_empty_result_sets_error_status(
        self, coordinator: RefreshCoordinator, refresh_fn: RecordingRefresh
    ) -> None:
        """没有可用订阅源时状态为 error."""
        refresh_fn.result = RefreshResult()
        await coordinator.refresh(RefreshContext(reason="manual"))
        assert coordinator.status == "error"
        assert coordinator.blocked_until_manual is False


class TestCircuitBreaker:
    """测试失败熔断."""

    async def test_failure_blocks_until_manual(
        self, coordinator: RefreshCoordinator, refresh_fn: RecordingRefresh
    ) -> None:
        """失败后非手动刷新被跳过，手动刷新成功后恢复."""
        refresh_fn.error = NetworkError("offline")

        with pytest.raises(NetworkError):
            await coordinator.refresh(RefreshContext(reason="background"))
        assert coordinator.status == "error"
        assert coordinator.last_error == "offline"
        assert coordinator.blocked_until_manual is True
        assert not coordinator.in_flight

        assert await coordinator.refresh(RefreshContext(reason="background")) is None
        assert await coordinator.refresh(RefreshContext(reason="foreground")) is None
        assert len(refresh_fn.calls) == 1

        refresh_fn.error = None
        await coordinator.refresh(RefreshContext(reason="manual"))
        assert coordinator.blocked_until_manual is False
        assert coordinator.status == "idle"
        assert coordinator.last_error is None

        await coordinator.refresh(RefreshContext(reason="background"))
        assert len(refresh_fn.calls) == 3


class TestRefreshContext:
    def test_unknown_reason_rejected(self) -> None:
        """刷新原因只能是 manual、foreground 或 background."""
        with pytest.raises(ValueError):
            RefreshContext(reason="bogus")
        assert RefreshContext().reason == "foreground"
