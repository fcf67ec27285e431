"""Wires pipeline components from configuration."""

from __future__ import annotations

import logging

from resource_updates.catalog.jobs import JobStore
from resource_updates.catalog.resources import ResourceRepository
from resource_updates.collection.collector import SourceCollector
from resource_updates.collection.github import RepositoryClient
from resource_updates.collection.ratelimit import ServiceRateLimiter
from resource_updates.collection.screenshots import ScreenshotCapture, is_playwright_available
from resource_updates.collection.web import PageFetcher, ScrapingBackend
from resource_updates.config import ProjectConfig
from resource_updates.integrations.models import TextGenerationClient, TextGenerationError

from .analyzer import ContentAnalyzer
from .config import PipelineConfig
from .orchestrator import JobOrchestrator
from .review import ReviewService

logger = logging.getLogger(__name__)


def build_orchestrator(
    config: PipelineConfig,
    project_config: ProjectConfig,
    *,
    resources: ResourceRepository | None = None,
    jobs: JobStore | None = None,
) -> JobOrchestrator:
    """Build an orchestrator with live network components.

    Without a text-generation key the orchestrator runs without an
    analyzer and proposes repository facts only.
    """
    resources = resources or ResourceRepository()
    jobs = jobs or JobStore()
    limiter = ServiceRateLimiter(config.politeness)

    fetcher = PageFetcher(
        backend=ScrapingBackend(api_url=project_config.scraper_api_url, timeout=config.fetch_timeout),
        rate_limiter=limiter,
        timeout=config.fetch_timeout,
        max_chars=config.max_source_chars,
    )
    collector = SourceCollector(
        fetcher,
        RepositoryClient(timeout=config.fetch_timeout, rate_limiter=limiter),
        max_workers=config.source_workers,
    )

    analyzer = None
    try:
        client = TextGenerationClient(model=config.model)
    except TextGenerationError as exc:
        logger.warning("Content analysis disabled: %s", exc)
    else:
        analyzer = ContentAnalyzer(
            client,
            model=config.model,
            max_prompt_chars=config.max_prompt_chars,
            rate_limiter=limiter,
        )

    screenshotter = None
    if config.capture_screenshots:
        if is_playwright_available():
            screenshotter = ScreenshotCapture(rate_limiter=limiter)
        else:
            logger.warning("Screenshots disabled: playwright is not installed")

    return JobOrchestrator(
        resources,
        jobs,
        collector,
        analyzer,
        config=config,
        screenshotter=screenshotter,
        review=ReviewService(resources, jobs, config),
    )
