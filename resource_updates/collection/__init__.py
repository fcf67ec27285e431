"""Source collection: page text, repository facts and screenshots."""

from .collector import CollectedSource, CollectionResult, SourceCollector
from .github import RepositoryClient, RepositoryMetadata, parse_github_url
from .ratelimit import ServiceRateLimiter
from .screenshots import ScreenshotCapture
from .web import FetchedPage, PageFetcher, ScrapingBackend

__all__ = [
    "CollectedSource",
    "CollectionResult",
    "FetchedPage",
    "PageFetcher",
    "RepositoryClient",
    "RepositoryMetadata",
    "ScrapingBackend",
    "ScreenshotCapture",
    "ServiceRateLimiter",
    "SourceCollector",
    "parse_github_url",
]
