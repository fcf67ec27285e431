"""Shared fixtures: on-disk catalog and job store plus offline pipeline fakes."""

from __future__ import annotations

from typing import Any

import pytest

from resource_updates.catalog.jobs import JobStore, SourceError
from resource_updates.catalog.resources import Resource, ResourceRepository
from resource_updates.collection.collector import CollectedSource, CollectionResult
from resource_updates.pipeline.analyzer import AnalysisProposal
from resource_updates.pipeline.config import PipelineConfig
from resource_updates.pipeline.orchestrator import JobOrchestrator
from resource_updates.pipeline.review import Caller, ReviewService

PAGE_TEXT = (
    "Acme SDK is a toolkit for building agents. It ships streaming helpers, "
    "tool calling, retries with backoff and typed responses for every endpoint."
)


class FakeCollector:
    """Returns a canned collection result and counts calls."""

    def __init__(self, result: CollectionResult | None = None) -> None:
        self.result = result or CollectionResult(
            sources=[CollectedSource(source="page", url="https://acme.dev", text=PAGE_TEXT, title="Acme SDK")],
        )
        self.calls = 0

    def collect(self, resource: Resource) -> CollectionResult:
        self.calls += 1
        return self.result


class FakeAnalyzer:
    """Returns a fixed proposal, or raises the configured error."""

    def __init__(self, proposal: AnalysisProposal | None = None, error: Exception | None = None) -> None:
        self.proposal = proposal or AnalysisProposal()
        self.error = error
        self.calls = 0
        self.contents: list[str] = []

    def analyze(self, resource: Resource, content: str) -> AnalysisProposal:
        self.calls += 1
        self.contents.append(content)
        if self.error is not None:
            raise self.error
        return self.proposal


def make_resource(**overrides: Any) -> Resource:
    values: dict[str, Any] = {
        "slug": "acme-sdk",
        "title": "Acme SDK",
        "url": "https://acme.dev",
        "category": "sdks",
        "description": "An SDK for Acme agents.",
        "overview": "",
        "repository_url": "https://github.com/acme/sdk",
        "tags": ["sdk"],
        "features": ["Streaming"],
        "difficulty": "intermediate",
        "facts": {"github_stars": 120},
    }
    values.update(overrides)
    return Resource(**values)


def facts_only_collection(facts: dict[str, Any], errors: list[SourceError] | None = None) -> CollectionResult:
    return CollectionResult(
        sources=[CollectedSource(source="repository", url="https://github.com/acme/sdk", text="Repository: acme/sdk")],
        errors=errors or [],
        facts=facts,
    )


@pytest.fixture
def resources(tmp_path) -> ResourceRepository:
    return ResourceRepository(root=tmp_path / "resources", changelog_root=tmp_path / "changelog")


@pytest.fixture
def jobs(tmp_path) -> JobStore:
    return JobStore(root=tmp_path / "jobs", content_root=tmp_path / "content")


@pytest.fixture
def resource(resources) -> Resource:
    resource = make_resource()
    resources.save(resource)
    return resource


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


@pytest.fixture
def moderator() -> Caller:
    return Caller(user_id="mod-1", role="moderator")


@pytest.fixture
def build_orchestrator(resources, jobs, config):
    """Factory for an orchestrator over the tmp catalog with fake collaborators."""

    def _build(
        collector: FakeCollector | None = None,
        analyzer: FakeAnalyzer | None = None,
        **kwargs: Any,
    ) -> JobOrchestrator:
        cfg = kwargs.pop("config", config)
        return JobOrchestrator(
            resources,
            jobs,
            collector or FakeCollector(),
            analyzer,
            config=cfg,
            review=ReviewService(resources, jobs, cfg),
            **kwargs,
        )

    return _build
