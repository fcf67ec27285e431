"""Page fetching with a scraping backend and a plain-HTTP fallback.

The scraping backend (a Firecrawl-compatible ``/v1/scrape`` service) returns
clean markdown for JavaScript-heavy pages. It is optional: without an API
key, or when it errors, pages are fetched with ``requests`` and reduced to
text with trafilatura, falling back to BeautifulSoup when trafilatura finds
no main content.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TYPE_CHECKING

import requests
import trafilatura
from bs4 import BeautifulSoup

from resource_updates import utils
from resource_updates.errors import CollectorError

if TYPE_CHECKING:
    from .ratelimit import ServiceRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; ResourceUpdateBot/1.0)"
TRUNCATION_MARKER = "\n\n[... content truncated ...]"


@dataclass(slots=True, frozen=True)
class FetchedPage:
    """Text extracted from one URL."""

    url: str
    final_url: str
    text: str
    backend: str  # "scraper" | "plain"
    title: str | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def content_length(self) -> int:
        return len(self.text)


class ScrapingBackend:
    """Client for a Firecrawl-compatible scraping API."""

    DEFAULT_API_URL = "https://api.firecrawl.dev"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key or os.environ.get("FIRECRAWL_API_KEY")
        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def scrape(self, url: str) -> FetchedPage:
        """Scrape ``url`` into markdown.

        Raises:
            CollectorError: If the backend is unconfigured, errors, or
                returns no markdown.
        """
        if not self.available:
            raise CollectorError("Scraping backend is not configured")

        payload = {
            "url": url,
            "formats": ["markdown"],
            "onlyMainContent": True,
            "timeout": int(self.timeout * 1000),
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = self._session.post(
                f"{self.api_url}/v1/scrape",
                json=payload,
                headers=headers,
                # Leave the backend its own navigation budget plus overhead.
                timeout=self.timeout + 10,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            raise CollectorError(f"Scraping backend failed for {url}: {exc}") from exc
        except ValueError as exc:
            raise CollectorError(f"Scraping backend returned invalid JSON for {url}") from exc

        body = data.get("data") or {}
        markdown = (body.get("markdown") or "").strip()
        if not markdown:
            raise CollectorError(data.get("error") or f"No content returned for {url}")

        metadata = body.get("metadata") or {}
        return FetchedPage(
            url=url,
            final_url=metadata.get("sourceURL", url),
            text=markdown,
            backend="scraper",
            title=metadata.get("title"),
            metadata=metadata,
        )


class PageFetcher:
    """Fetches page text, preferring the scraping backend when it works."""

    def __init__(
        self,
        *,
        backend: ScrapingBackend | None = None,
        rate_limiter: "ServiceRateLimiter | None" = None,
        timeout: float = 30.0,
        max_chars: int = 10000,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
    ) -> None:
        self.backend = backend
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.max_chars = max_chars
        self.user_agent = user_agent
        self._session = session or requests.Session()

    def fetch(self, url: str) -> FetchedPage:
        """Fetch ``url`` and return its bounded text.

        Raises:
            CollectorError: If ``url`` is not HTTP(S), or both the backend and
                the plain fetch fail.
        """
        if not utils.is_http_url(url):
            raise CollectorError(f"Not an HTTP(S) URL: {url!r}")
        if self.backend is not None and self.backend.available:
            self._wait("scraper")
            try:
                page = self.backend.scrape(url)
            except CollectorError as exc:
                logger.warning("Scraping backend failed for %s, using plain fetch: %s", url, exc)
            else:
                return self._bounded(page)

        return self._bounded(self._fetch_plain(url))

    def _fetch_plain(self, url: str) -> FetchedPage:
        self._wait("page")
        logger.info("Fetching %s", url)
        try:
            response = self._session.get(
                url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml",
                },
                timeout=self.timeout,
                allow_redirects=True,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CollectorError(f"Failed to fetch {url}: {exc}") from exc

        html = response.text
        text = extract_text(html, url=response.url or url)
        if not text:
            raise CollectorError(f"No extractable text found at {url}")

        return FetchedPage(
            url=url,
            final_url=response.url or url,
            text=text,
            backend="plain",
            title=extract_title(html),
            metadata={"status_code": response.status_code},
        )

    def _bounded(self, page: FetchedPage) -> FetchedPage:
        if page.content_length <= self.max_chars:
            return page
        return FetchedPage(
            url=page.url,
            final_url=page.final_url,
            text=utils.truncate(page.text, self.max_chars, TRUNCATION_MARKER),
            backend=page.backend,
            title=page.title,
            fetched_at=page.fetched_at,
            metadata={**page.metadata, "truncated": True, "original_length": page.content_length},
        )

    def _wait(self, service: str) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.wait(service)


def extract_text(html: str, url: str | None = None) -> str:
    """Reduce an HTML document to readable text."""
    cleaned = _strip_hidden_elements(html)
    extracted = trafilatura.extract(cleaned, url=url)
    if extracted and extracted.strip():
        return extracted.strip()

    soup = BeautifulSoup(cleaned, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return utils.normalize_whitespace(soup.get_text(" ", strip=True))


def extract_title(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        title = utils.normalize_whitespace(soup.title.string)
        return title or None
    return None


def _strip_hidden_elements(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")

    # Hidden from screen readers, so not part of the page's readable content
    for hidden in soup.find_all(attrs={"aria-hidden": "true"}):
        hidden.decompose()

    for hidden in soup.find_all(class_=lambda c: c and any(
        pattern in c for pattern in ("visually-hidden", "sr-only")
    )):
        hidden.decompose()

    return str(soup)
