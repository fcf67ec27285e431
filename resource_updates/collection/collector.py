"""Collects source text and repository facts for one resource.

Each source is fetched independently. A failing source becomes a
``SourceError`` and never prevents the others from being collected.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from resource_updates import utils
from resource_updates.catalog.jobs import SourceError
from resource_updates.catalog.resources import Resource

from .github import RepositoryClient, parse_github_url
from .web import PageFetcher

logger = logging.getLogger(__name__)

SOURCE_ORDER = ("page", "documentation", "repository", "readme")


@dataclass(slots=True)
class CollectedSource:
    """Text gathered from one source."""

    source: str
    url: str
    text: str
    title: str | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def characters(self) -> int:
        return len(self.text)


@dataclass(slots=True)
class CollectionResult:
    """Everything gathered for a resource in one collection pass."""

    sources: list[CollectedSource] = field(default_factory=list)
    errors: list[SourceError] = field(default_factory=list)
    facts: dict[str, Any] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.sources) + len(self.errors)

    @property
    def total_failure(self) -> bool:
        """Every attempted source failed and nothing usable came back."""
        return not self.sources and not self.facts and bool(self.errors)

    def aggregated_text(self, max_chars: int | None = None) -> str:
        """Combine source texts into one labelled block, bounded to ``max_chars``."""
        blocks = []
        for index, source in enumerate(self.sources, start=1):
            header = f"### Source {index} ({source.source}): {source.url}"
            if source.title:
                header += f"\nTitle: {source.title}"
            blocks.append(f"{header}\n\n{source.text.strip()}")
        text = "\n\n".join(blocks)
        if max_chars:
            text = utils.truncate(text, max_chars, "\n\n[... truncated ...]")
        return text


@dataclass(frozen=True)
class _Task:
    source: str
    url: str
    run: Callable[[], tuple[str | None, str, dict[str, Any]]]


class SourceCollector:
    """Fetches a resource's page, documentation, repository facts and README."""

    def __init__(
        self,
        page_fetcher: PageFetcher,
        repository_client: RepositoryClient | None = None,
        *,
        max_workers: int = 4,
    ) -> None:
        self.page_fetcher = page_fetcher
        self.repository_client = repository_client
        self.max_workers = max(1, max_workers)

    def plan(self, resource: Resource) -> list[_Task]:
        tasks: list[_Task] = []
        if resource.url:
            tasks.append(_Task("page", resource.url, lambda: self._fetch_page(resource.url)))

        docs = resource.documentation_url
        if docs and docs != resource.url:
            tasks.append(_Task("documentation", docs, lambda: self._fetch_page(docs)))

        repo_url = resource.repository_url or resource.url
        repository = parse_github_url(repo_url)
        if repository and self.repository_client is not None:
            owner, name = repository
            tasks.append(_Task("repository", repo_url, lambda: self._fetch_metadata(owner, name)))
            tasks.append(_Task("readme", repo_url, lambda: self._fetch_readme(owner, name)))
        return tasks

    def collect(self, resource: Resource) -> CollectionResult:
        tasks = self.plan(resource)
        result = CollectionResult()
        if not tasks:
            return result

        outcomes: dict[str, CollectedSource] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(tasks))) as executor:
            futures = {executor.submit(task.run): task for task in tasks}
            for future in as_completed(futures):
                task = futures[future]
                try:
                    title, text, facts = future.result()
                except Exception as exc:  # noqa: BLE001 - one source never sinks the job
                    logger.warning("Source %s failed for %s: %s", task.source, resource.slug, exc)
                    result.errors.append(SourceError(source=task.source, url=task.url, error=str(exc)))
                    continue
                result.facts.update(facts)
                if text:
                    outcomes[task.source] = CollectedSource(
                        source=task.source, url=task.url, text=text, title=title
                    )

        result.sources = [outcomes[name] for name in SOURCE_ORDER if name in outcomes]
        result.errors.sort(key=lambda error: SOURCE_ORDER.index(error.source))
        logger.info(
            "Collected %d/%d sources for %s",
            len(result.sources),
            len(tasks),
            resource.slug,
        )
        return result

    def _fetch_page(self, url: str) -> tuple[str | None, str, dict[str, Any]]:
        page = self.page_fetcher.fetch(url)
        return page.title, page.text, {}

    def _fetch_metadata(self, owner: str, repo: str) -> tuple[str | None, str, dict[str, Any]]:
        metadata = self.repository_client.fetch_metadata(owner, repo)
        return f"{owner}/{repo}", metadata.describe(), metadata.to_facts()

    def _fetch_readme(self, owner: str, repo: str) -> tuple[str | None, str, dict[str, Any]]:
        readme = self.repository_client.fetch_readme(owner, repo)
        return "README", utils.truncate(readme, self.page_fetcher.max_chars), {}
