"""待确认状态的内存覆盖层."""

import itertools
from collections.abc import Iterator
from contextlib import contextmanager

from pollen.models.article import Article

STATUS_FIELDS = ("read", "saved")


class StatusOverlay:
    """
    远端写入确认之前，读取时用待写入的状态覆盖持久化状态.

    每次 :meth:`pending` 在退出时撤销自己写入的覆盖值：成功时本地库已经
    持久化了新状态，失败时回到持久化状态。同一篇文章被再次修改后，
    旧的撤销不会抹掉新的覆盖值。
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, tuple[int, bool]]] = {}
        self._tokens = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, article_id: str) -> dict[str, bool]:
        """文章当前的覆盖值."""
        return {name: value for name, (_, value) in self._entries.get(article_id, {}).items()}

    @contextmanager
    def pending(self, article_ids: list[str], **status: bool) -> Iterator[None]:
        """在块内为这些文章覆盖状态."""
        unknown = set(status) - set(STATUS_FIELDS)
        if unknown:
            msg = f"未知的状态字段: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        token = next(self._tokens)
        for article_id in article_ids:
            entry = self._entries.setdefault(article_id, {})
            for name, value in status.items():
                entry[name] = (token, value)
        try:
            yield
        finally:
            for article_id in article_ids:
                entry = self._entries.get(article_id)
                if entry is None:
                    continue
                for name in status:
                    if name in entry and entry[name][0] == token:
                        del entry[name]
                if not entry:
                    del self._entries[article_id]

    def apply(self, article: Article | None) -> Article | None:
        """返回叠加覆盖值后的文章."""
        if article is None:
            return None
        overrides = self.get(article.id)
        if not overrides:
            return article
        return article.model_copy(update=overrides)

    def apply_many(self, articles: list[Article]) -> list[Article]:
        """批量叠加覆盖值."""
        if not self._entries:
            return articles
        return [self.apply(a) for a in articles]  # type: ignore[misc]
