"""阅读后端（本地 / Fever）."""

from pollen.reader.base import ArticlesApi, FeedsApi, FoldersApi, ReaderStrategy
from pollen.reader.fever import FeverReaderStrategy
from pollen.reader.fever_client import FeverClient, fever_api_key
from pollen.reader.local import LocalReaderStrategy
from pollen.reader.overlay import StatusOverlay
from pollen.reader.registry import FeverAccount, LocalAccount, ReaderRegistry

__all__ = [
    "ArticlesApi",
    "FeedsApi",
    "FeverAccount",
    "FeverClient",
    "FeverReaderStrategy",
    "FoldersApi",
    "LocalAccount",
    "LocalReaderStrategy",
    "ReaderRegistry",
    "ReaderStrategy",
    "StatusOverlay",
    "fever_api_key",
]
