"""后台调度."""

from pollen.scheduler.background import (
    BackgroundFetchResult,
    BackgroundMarker,
    BackgroundRefreshTask,
    register,
)

__all__ = [
    "BackgroundFetchResult",
    "BackgroundMarker",
    "BackgroundRefreshTask",
    "register",
]
