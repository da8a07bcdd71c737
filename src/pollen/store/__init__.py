"""本地存储."""

from pollen.store.articles import ArticlePage, ArticleStore
from pollen.store.feeds import FeedStore
from pollen.store.folders import FolderStore
from pollen.store.settings import SettingStore

__all__ = [
    "ArticlePage",
    "ArticleStore",
    "FeedStore",
    "FolderStore",
    "SettingStore",
]
