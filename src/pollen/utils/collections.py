"""集合工具."""

from collections.abc import Iterable, Sequence
from typing import Protocol, TypeVar


class _HasId(Protocol):
    id: str


T = TypeVar("T", bound=_HasId)
S = TypeVar("S")


def dedupe_by_id(items: Iterable[T]) -> list[T]:
    """按 id 去重，保留首次出现，其余顺序不变."""
    seen: set[str] = set()
    result: list[T] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        result.append(item)
    return result


def chunk(items: Sequence[S], size: int) -> list[list[S]]:
    """按固定大小分批."""
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
