"""Tests for moderator review, auto-apply and changelog summaries."""

from __future__ import annotations

import pytest

from conftest import FakeAnalyzer, FakeCollector, make_resource
from resource_updates.catalog.jobs import JobStatus, ProposedChange
from resource_updates.catalog.resources import FieldChange, compute_content_hash
from resource_updates.collection.collector import CollectedSource, CollectionResult
from resource_updates.errors import (
    FieldNotProposedError,
    JobNotFoundError,
    JobNotReviewableError,
    MissingRejectionReasonError,
    NotAuthorizedError,
    ValidationError,
)
from resource_updates.pipeline.analyzer import AnalysisProposal
from resource_updates.pipeline.review import (
    Caller,
    ReviewService,
    RoleAuthorizer,
    is_auto_eligible,
    summarize_changes,
)

D1 = "An SDK for Acme agents."
D2 = "Acme SDK is a Python toolkit for building tool-using agents."
PAGE = "Acme SDK documentation. " * 10


@pytest.fixture
def review(resources, jobs, config) -> ReviewService:
    return ReviewService(resources, jobs, config)


@pytest.fixture
def ready_job(build_orchestrator, resources):
    """A job proposing description, tags and a stars change."""
    resources.save(make_resource(description=D1, tags=["sdk"], facts={"github_stars": 120}))
    analyzer = FakeAnalyzer(AnalysisProposal(description=D2, tags=["agents"], confidence=0.9))
    collector = FakeCollector(CollectionResult(
        sources=[CollectedSource(source="page", url="https://acme.dev", text=PAGE)],
        facts={"github_stars": 150},
    ))
    job = build_orchestrator(collector, analyzer).run_resource("acme-sdk")
    assert job.status == JobStatus.READY_FOR_REVIEW
    assert job.proposed_fields == ["description", "tags", "github_stars"]
    return job


class TestRoleAuthorizer:
    @pytest.mark.parametrize("role,allowed", [
        ("user", False), ("editor", False), ("moderator", True), ("admin", True), ("superadmin", True),
        ("unknown", False),
    ])
    def test_moderator_or_higher(self, role, allowed):
        assert RoleAuthorizer().is_authorized(Caller("u", role)) is allowed

    def test_invalid_minimum_role(self):
        with pytest.raises(ValueError):
            RoleAuthorizer("owner")


class TestApprove:
    def test_approve_description_only(self, review, ready_job, resources, moderator):
        """Approving one field writes it, rehashes and records one changelog entry."""
        job = review.approve(ready_job.id, ["description"], "Looks right", caller=moderator)

        resource = resources.get("acme-sdk")
        assert job.status == JobStatus.APPLIED
        assert job.reviewed_by == "mod-1"
        assert job.selected_fields == ["description"]
        assert job.review_notes == "Looks right"
        assert resource.description == D2
        assert resource.content_hash == compute_content_hash(D2, "")
        assert resource.tags == ["sdk"]
        assert resource.facts["github_stars"] == 120

        entries = resources.list_changelog("acme-sdk")
        assert len(entries) == 1
        assert entries[0].changes == (FieldChange("description", D1, D2),)
        assert entries[0].source == "reviewed"
        assert entries[0].job_id == job.id
        assert entries[0].applied_by == "mod-1"

    def test_approve_subset_matches_changelog(self, review, ready_job, resources, moderator):
        review.approve(ready_job.id, ["tags", "github_stars"], caller=moderator)

        resource = resources.get("acme-sdk")
        assert resource.tags == ["sdk", "agents"]
        assert resource.facts["github_stars"] == 150
        assert resource.description == D1
        entry = resources.list_changelog("acme-sdk")[0]
        assert entry.fields == ["tags", "github_stars"]
        assert entry.stats_snapshot == {"github_stars": 150}
        assert entry.source_urls == ("https://acme.dev",)

    def test_unproposed_field_rejected_without_mutation(self, review, ready_job, resources, jobs, moderator):
        before = resources.get("acme-sdk")
        with pytest.raises(FieldNotProposedError) as exc_info:
            review.approve(ready_job.id, ["description", "difficulty"], caller=moderator)

        assert exc_info.value.fields == ["difficulty"]
        assert resources.get("acme-sdk") == before
        assert resources.list_changelog("acme-sdk") == []
        assert jobs.get(ready_job.id).status == JobStatus.READY_FOR_REVIEW

    def test_empty_selection_rejected(self, review, ready_job, resources, jobs, moderator):
        with pytest.raises(ValidationError, match="select at least one"):
            review.approve(ready_job.id, [], caller=moderator)
        assert jobs.get(ready_job.id).status == JobStatus.READY_FOR_REVIEW
        assert resources.list_changelog("acme-sdk") == []

    def test_second_approval_not_reviewable(self, review, ready_job, moderator):
        review.approve(ready_job.id, ["description"], caller=moderator)
        with pytest.raises(JobNotReviewableError):
            review.approve(ready_job.id, ["description"], caller=moderator)

    def test_unknown_job(self, review, moderator):
        with pytest.raises(JobNotFoundError):
            review.approve("missing", [], caller=moderator)

    def test_requires_moderator(self, review, ready_job, resources):
        with pytest.raises(NotAuthorizedError):
            review.approve(ready_job.id, ["description"], caller=Caller("u-1", "editor"))
        assert resources.get("acme-sdk").description == D1

    def test_apply_failure_marks_job_failed(self, review, ready_job, resources, jobs, moderator, monkeypatch):
        from resource_updates.errors import RepositoryError

        def broken(*args, **kwargs):
            raise RepositoryError("disk full")

        monkeypatch.setattr(resources, "apply_changes", broken)
        with pytest.raises(RepositoryError):
            review.approve(ready_job.id, ["description"], caller=moderator)

        stored = jobs.get(ready_job.id)
        assert stored.status == JobStatus.FAILED
        assert "disk full" in stored.error_message

    def test_unexpected_apply_error_fails_job(self, review, ready_job, resources, jobs, moderator, monkeypatch,
                                              build_orchestrator):
        """A non-pipeline error during apply still closes the job so the resource can be retried."""
        def crash(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(resources, "apply_changes", crash)
        with pytest.raises(OSError):
            review.approve(ready_job.id, ["description"], caller=moderator)

        stored = jobs.get(ready_job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_details == {"stage": "apply", "type": "OSError"}
        assert jobs.find_active("acme-sdk") is None

        retry = build_orchestrator().retry_job(ready_job.id)
        assert retry.retry_of == ready_job.id
        assert retry.status == JobStatus.PENDING


class TestCompleteApproved:
    def _interrupt(self, jobs, job, fields):
        job.transition_to(JobStatus.APPROVED)
        job.reviewed_by = "mod-1"
        job.selected_fields = fields
        jobs.save(job)
        return job

    def test_resume_applies_persisted_selection(self, build_orchestrator, ready_job, resources, jobs):
        self._interrupt(jobs, ready_job, ["description"])

        job = build_orchestrator().resume_job(ready_job.id)

        assert job.status == JobStatus.APPLIED
        assert resources.get("acme-sdk").description == D2
        entries = resources.list_changelog("acme-sdk")
        assert len(entries) == 1
        assert entries[0].fields == ["description"]
        assert entries[0].applied_by == "mod-1"
        assert entries[0].source == "reviewed"

    def test_resume_after_completed_write_only_closes(self, build_orchestrator, ready_job, resources, jobs):
        self._interrupt(jobs, ready_job, ["description"])
        resources.apply_changes("acme-sdk", {"description": D2}, None, job_id=ready_job.id)

        job = build_orchestrator().resume_job(ready_job.id)

        assert job.status == JobStatus.APPLIED
        assert resources.list_changelog("acme-sdk") == []

    def test_only_approved_jobs(self, review, ready_job):
        with pytest.raises(JobNotReviewableError):
            review.complete_approved(ready_job)


class TestReject:
    def test_reject_with_notes(self, review, ready_job, resources, moderator):
        before = resources.get("acme-sdk")
        job = review.reject(ready_job.id, "Description is marketing copy", caller=moderator)

        assert job.status == JobStatus.REJECTED
        assert job.review_notes == "Description is marketing copy"
        assert resources.get("acme-sdk") == before
        assert resources.list_changelog("acme-sdk") == []

    @pytest.mark.parametrize("notes", ["", "   ", None])
    def test_reject_requires_notes(self, review, ready_job, jobs, moderator, notes):
        with pytest.raises(MissingRejectionReasonError):
            review.reject(ready_job.id, notes, caller=moderator)
        assert jobs.get(ready_job.id).status == JobStatus.READY_FOR_REVIEW

    def test_reject_requires_moderator(self, review, ready_job):
        with pytest.raises(NotAuthorizedError):
            review.reject(ready_job.id, "no", caller=Caller("u-1", "user"))


class TestAutoApply:
    def test_eligibility(self, config):
        def change(field, confidence=1.0, breaking=False):
            return ProposedChange(field, field, None, "x", confidence, "r", breaking)

        assert is_auto_eligible(change("github_stars"), config)
        assert is_auto_eligible(change("screenshots"), config)
        assert is_auto_eligible(change("description", 0.9), config)
        assert not is_auto_eligible(change("description", 0.7), config)
        assert not is_auto_eligible(change("tags", 0.95), config)
        assert not is_auto_eligible(change("features", 0.95, breaking=True), config)

    def test_auto_apply_commits_only_eligible(self, review, ready_job, resources):
        job = review.auto_apply(ready_job)

        assert job.status == JobStatus.APPLIED
        assert job.reviewed_by == "system"
        assert job.selected_fields == ["description", "github_stars"]
        assert "tags" in job.review_notes

        resource = resources.get("acme-sdk")
        assert resource.description == D2
        assert resource.tags == ["sdk"]
        entry = resources.list_changelog("acme-sdk")[0]
        assert entry.source == "automatic"
        assert entry.fields == ["description", "github_stars"]


class TestIdempotence:
    def test_second_run_after_apply_proposes_nothing(self, build_orchestrator, resources, moderator, review):
        resources.save(make_resource(description=D1, tags=["sdk"], facts={"github_stars": 120}))
        analyzer = FakeAnalyzer(AnalysisProposal(description=D2, tags=["agents"], features=["Streaming", "Tools"],
                                                 difficulty="advanced", overview="Overview.", confidence=0.9))
        collector = FakeCollector(CollectionResult(
            sources=[CollectedSource(source="page", url="https://acme.dev", text=PAGE)],
            facts={"github_stars": 150, "github_license": "MIT"},
        ))
        orchestrator = build_orchestrator(collector, analyzer)

        first = orchestrator.run_resource("acme-sdk")
        review.approve(first.id, first.proposed_fields, caller=moderator)
        second = orchestrator.run_resource("acme-sdk")

        assert second.proposed_changes == []
        assert second.status == JobStatus.APPLIED
        assert len(resources.list_changelog("acme-sdk")) == 1


class TestSummarizeChanges:
    def test_format(self):
        summary = summarize_changes([FieldChange("github_stars", 120, 150)])
        assert summary == "GitHub Stars: 120 → 150"

    def test_long_values_truncated(self):
        summary = summarize_changes([FieldChange("description", "a", "x" * 80)])
        assert summary == "Description: a → " + "x" * 50 + "..."

    def test_lists_shortened(self):
        summary = summarize_changes([FieldChange("tags", [], ["a", "b", "c", "d", "e"])])
        assert summary == "Tags: (empty) → [a, b, c +2 more]"

    def test_no_changes(self):
        assert summarize_changes([]) == "No changes"
