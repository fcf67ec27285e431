"""Tests for job creation and the staged pipeline run."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from conftest import PAGE_TEXT, FakeAnalyzer, FakeCollector, facts_only_collection, make_resource
from resource_updates.catalog.jobs import JobStatus, SourceError, TriggerKind
from resource_updates.collection.collector import CollectedSource, CollectionResult
from resource_updates.errors import (
    AnalysisError,
    InvalidTransitionError,
    JobConflictError,
    JobNotFoundError,
    ResourceNotFoundError,
    ScreenshotError,
    ValidationError,
)
from resource_updates.pipeline.analyzer import AnalysisProposal
from resource_updates.pipeline.config import PipelineConfig

D2 = "Acme SDK is a Python toolkit for building tool-using agents."


def _page_failure_collection() -> CollectionResult:
    readme = "# Acme SDK\n\n" + PAGE_TEXT
    return CollectionResult(
        sources=[
            CollectedSource(source="repository", url="https://github.com/acme/sdk", text="Repository: acme/sdk"),
            CollectedSource(source="readme", url="https://github.com/acme/sdk", text=readme),
        ],
        errors=[SourceError(source="page", url="https://acme.dev", error="HTTP 503")],
        facts={"github_stars": 150},
    )


class TestCreateJob:
    def test_creates_pending_job(self, build_orchestrator, resource):
        job = build_orchestrator().create_job("acme-sdk", TriggerKind.MANUAL, "user-1")
        assert job.status == JobStatus.PENDING
        assert job.triggered_by == "user-1"

    def test_unknown_resource(self, build_orchestrator):
        with pytest.raises(ResourceNotFoundError):
            build_orchestrator().create_job("ghost")

    def test_single_active_job_per_resource(self, build_orchestrator, resource):
        orchestrator = build_orchestrator()
        orchestrator.create_job("acme-sdk")
        with pytest.raises(JobConflictError):
            orchestrator.create_job("acme-sdk")

    def test_get_job(self, build_orchestrator, resource):
        orchestrator = build_orchestrator()
        job = orchestrator.create_job("acme-sdk")
        assert orchestrator.get_job(job.id) == job
        assert orchestrator.get_job("missing") is None


class TestProcessJob:
    """Tests for the stage sequence."""

    def test_reaches_review_with_proposals(self, build_orchestrator, resource, jobs):
        analyzer = FakeAnalyzer(AnalysisProposal(description=D2, confidence=0.9, summary="Clearer copy"))
        orchestrator = build_orchestrator(analyzer=analyzer)
        job = orchestrator.create_job("acme-sdk")

        job = orchestrator.process_job(job.id)

        assert job.status == JobStatus.READY_FOR_REVIEW
        assert job.proposed_fields == ["description"]
        assert job.analysis_confidence == 0.9
        assert job.analysis_summary == "Clearer copy"
        assert job.collected[0].source == "page"
        # Stage outputs are persisted with the job
        stored = jobs.get(job.id)
        assert stored.status == JobStatus.READY_FOR_REVIEW
        assert jobs.read_content(stored.collected[0]) == PAGE_TEXT

    def test_stars_only_change(self, build_orchestrator, resources, jobs):
        """Stars 120 -> 150 with nothing else different yields exactly one change."""
        resources.save(make_resource(facts={"github_stars": 120}))
        analyzer = FakeAnalyzer(AnalysisProposal(description="An SDK for Acme agents.", confidence=0.2,
                                                 tags=["sdk"], features=["Streaming"], difficulty="intermediate"))
        collector = FakeCollector(CollectionResult(
            sources=[CollectedSource(source="page", url="https://acme.dev", text=PAGE_TEXT)],
            facts={"github_stars": 150},
        ))
        job = build_orchestrator(collector, analyzer).run_resource("acme-sdk")

        assert job.status == JobStatus.READY_FOR_REVIEW
        assert len(job.proposed_changes) == 1
        change = job.proposed_changes[0]
        assert (change.field, change.old_value, change.new_value) == ("github_stars", 120, 150)
        assert change.confidence == 1.0
        assert change.is_breaking is False

    def test_page_failure_with_repository_success_proceeds(self, build_orchestrator, resource):
        analyzer = FakeAnalyzer(AnalysisProposal(description=D2, confidence=0.9))
        orchestrator = build_orchestrator(FakeCollector(_page_failure_collection()), analyzer)

        job = orchestrator.run_resource("acme-sdk")

        assert analyzer.calls == 1
        assert job.status == JobStatus.READY_FOR_REVIEW
        assert len(job.source_errors) == 1
        assert job.source_errors[0].source == "page"

    def test_all_sources_failed(self, build_orchestrator, resource):
        collector = FakeCollector(CollectionResult(
            errors=[SourceError(source="page", url="https://acme.dev", error="timeout")],
        ))
        analyzer = FakeAnalyzer()
        job = build_orchestrator(collector, analyzer).run_resource("acme-sdk")

        assert job.status == JobStatus.FAILED
        assert "All sources failed" in job.error_message
        assert job.error_details["stage"] == "scraping"
        assert analyzer.calls == 0

    def test_analysis_failure_fails_job(self, build_orchestrator, resource):
        analyzer = FakeAnalyzer(error=AnalysisError("No JSON object found"))
        job = build_orchestrator(analyzer=analyzer).run_resource("acme-sdk")

        assert job.status == JobStatus.FAILED
        assert "Analysis failed" in job.error_message
        assert job.collected  # partial data kept

    def test_short_content_skips_analysis(self, build_orchestrator, resource):
        analyzer = FakeAnalyzer()
        collector = FakeCollector(facts_only_collection({"github_stars": 150}))
        job = build_orchestrator(collector, analyzer).run_resource("acme-sdk")

        assert analyzer.calls == 0
        assert job.analysis is None
        assert job.proposed_fields == ["github_stars"]

    def test_without_analyzer_proposes_facts_only(self, build_orchestrator, resource):
        collector = FakeCollector(facts_only_collection({"github_stars": 200}))
        job = build_orchestrator(collector).run_resource("acme-sdk")
        assert job.proposed_fields == ["github_stars"]

    def test_no_changes_closes_job(self, build_orchestrator, resource, resources):
        """A job with nothing to propose is closed without a changelog entry."""
        job = build_orchestrator(FakeCollector(facts_only_collection({"github_stars": 120}))).run_resource("acme-sdk")

        assert job.status == JobStatus.APPLIED
        assert job.review_notes == "No changes detected"
        assert resources.list_changelog("acme-sdk") == []
        assert resources.get("acme-sdk").last_auto_updated_at is not None

    def test_unexpected_stage_error_fails_job(self, build_orchestrator, resource):
        collector = MagicMock()
        collector.collect.side_effect = RuntimeError("boom")
        job = build_orchestrator(collector).run_resource("acme-sdk")

        assert job.status == JobStatus.FAILED
        assert job.error_details == {"stage": "scraping", "type": "RuntimeError"}

    def test_process_requires_pending(self, build_orchestrator, resource):
        orchestrator = build_orchestrator(FakeCollector(facts_only_collection({"github_stars": 150})))
        job = orchestrator.run_resource("acme-sdk")
        with pytest.raises(InvalidTransitionError):
            orchestrator.process_job(job.id)

    def test_process_unknown_job(self, build_orchestrator):
        with pytest.raises(JobNotFoundError):
            build_orchestrator().process_job("missing")

    def test_automatic_policy_applies(self, build_orchestrator, resource, resources):
        config = PipelineConfig(apply_policy="automatic")
        collector = FakeCollector(facts_only_collection({"github_stars": 150}))
        job = build_orchestrator(collector, config=config).run_resource("acme-sdk")

        assert job.status == JobStatus.APPLIED
        assert resources.get("acme-sdk").facts["github_stars"] == 150
        assert resources.list_changelog("acme-sdk")[0].source == "automatic"


class TestScreenshotsStage:
    def test_screenshot_proposed(self, build_orchestrator, resource):
        screenshotter = MagicMock()
        screenshotter.capture.return_value = "acme-sdk/abc.png"
        config = PipelineConfig(capture_screenshots=True)
        orchestrator = build_orchestrator(FakeCollector(facts_only_collection({})), config=config,
                                          screenshotter=screenshotter)

        job = orchestrator.run_resource("acme-sdk")

        screenshotter.capture.assert_called_once_with("https://acme.dev", "acme-sdk")
        assert job.new_screenshots == ["acme-sdk/abc.png"]
        assert job.proposed_fields == ["screenshots"]

    def test_screenshot_error_recorded_not_fatal(self, build_orchestrator, resource):
        screenshotter = MagicMock()
        screenshotter.capture.side_effect = ScreenshotError("HTTP 500")
        config = PipelineConfig(capture_screenshots=True)
        orchestrator = build_orchestrator(FakeCollector(facts_only_collection({"github_stars": 150})),
                                          config=config, screenshotter=screenshotter)

        job = orchestrator.run_resource("acme-sdk")

        assert job.status == JobStatus.READY_FOR_REVIEW
        assert job.screenshot_errors == ["HTTP 500"]
        assert job.proposed_fields == ["github_stars"]


class TestResumeAndRetry:
    def test_resume_reuses_collected_content(self, build_orchestrator, resource, jobs):
        collector = FakeCollector()
        analyzer = FakeAnalyzer(AnalysisProposal(description=D2, confidence=0.9))
        orchestrator = build_orchestrator(collector, analyzer)
        job = orchestrator.create_job("acme-sdk")

        # Simulate a crash after collection was persisted
        job.transition_to(JobStatus.SCRAPING)
        jobs.save(job)
        orchestrator._collect(job, resource)
        job.transition_to(JobStatus.ANALYZING)
        jobs.save(job)

        resumed = orchestrator.resume_job(job.id)

        assert resumed.status == JobStatus.READY_FOR_REVIEW
        assert collector.calls == 1
        assert PAGE_TEXT in analyzer.contents[0]

    def test_resume_reuses_persisted_analysis(self, build_orchestrator, resource, jobs):
        analyzer = FakeAnalyzer(AnalysisProposal(description=D2, confidence=0.9))
        orchestrator = build_orchestrator(analyzer=analyzer)
        job = orchestrator.create_job("acme-sdk")
        job.transition_to(JobStatus.SCRAPING)
        orchestrator._collect(job, resource)
        job.transition_to(JobStatus.ANALYZING)
        orchestrator._analyze(job, resource)
        jobs.save(job)

        resumed = orchestrator.resume_job(job.id)

        assert analyzer.calls == 1
        assert resumed.proposed_fields == ["description"]

    def test_resume_terminal_job_rejected(self, build_orchestrator, resource):
        orchestrator = build_orchestrator(FakeCollector(CollectionResult(
            errors=[SourceError(source="page", url="u", error="down")],
        )))
        failed = orchestrator.run_resource("acme-sdk")
        with pytest.raises(InvalidTransitionError):
            orchestrator.resume_job(failed.id)

    def test_retry_failed_job(self, build_orchestrator, resource):
        orchestrator = build_orchestrator(FakeCollector(CollectionResult(
            errors=[SourceError(source="page", url="u", error="down")],
        )))
        failed = orchestrator.run_resource("acme-sdk")

        retry = orchestrator.retry_job(failed.id)

        assert retry.retry_of == failed.id
        assert retry.status == JobStatus.PENDING
        assert orchestrator.get_job(failed.id).status == JobStatus.FAILED

    def test_retry_requires_failed(self, build_orchestrator, resource):
        orchestrator = build_orchestrator()
        job = orchestrator.create_job("acme-sdk")
        with pytest.raises(ValidationError):
            orchestrator.retry_job(job.id)


class TestQueries:
    def test_pending_review_jobs_with_total(self, build_orchestrator, resources):
        analyzer = FakeAnalyzer(AnalysisProposal(description=D2, confidence=0.9))
        orchestrator = build_orchestrator(analyzer=analyzer)
        for slug in ("a", "b", "c"):
            resources.save(make_resource(slug=slug))
            orchestrator.run_resource(slug)

        page, total = orchestrator.pending_review_jobs(limit=2)
        assert total == 3
        assert len(page) == 2

    def test_list_jobs_by_resource(self, build_orchestrator, resources):
        orchestrator = build_orchestrator()
        for slug in ("a", "b"):
            resources.save(make_resource(slug=slug))
            orchestrator.create_job(slug)
        assert [j.resource_slug for j in orchestrator.list_jobs(resource_slug="b")] == ["b"]
