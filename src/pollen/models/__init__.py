"""数据模型."""

from pollen.models.article import Article, ArticleRow, ArticleStatus
from pollen.models.database import Database, get_database
from pollen.models.feed import Feed
from pollen.models.folder import FeedFolder
from pollen.models.settings import SettingItem

__all__ = [
    "Article",
    "ArticleRow",
    "ArticleStatus",
    "Database",
    "Feed",
    "FeedFolder",
    "SettingItem",
    "get_database",
]
