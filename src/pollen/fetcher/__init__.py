"""订阅源抓取与解析."""

from pollen.fetcher.client import FeedFetcher, FetchResult
from pollen.fetcher.discovery import DiscoveryResult, FeedCandidate, FeedDiscovery
from pollen.fetcher.metadata import MetadataBudget, PageMetadata, PageMetadataResolver
from pollen.fetcher.parser import ParsedFeed, parse_feed
from pollen.fetcher.reader_mode import ReaderModeExtractor, ReaderResult

__all__ = [
    "DiscoveryResult",
    "FeedCandidate",
    "FeedDiscovery",
    "FeedFetcher",
    "FetchResult",
    "MetadataBudget",
    "PageMetadata",
    "PageMetadataResolver",
    "ParsedFeed",
    "ReaderModeExtractor",
    "ReaderResult",
    "parse_feed",
]
