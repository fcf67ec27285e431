"""Drives update jobs through the collection, analysis and screenshot stages.

Each stage persists its output on the job before the status advances, so a
job interrupted mid-run can be resumed from the last completed stage.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from resource_updates.catalog.jobs import (
    ContentRef,
    JobStatus,
    JobStore,
    TriggerKind,
    UpdateJob,
)
from resource_updates.catalog.resources import Resource, ResourceRepository
from resource_updates.collection.collector import CollectedSource, CollectionResult, SourceCollector
from resource_updates.errors import (
    AnalysisError,
    InvalidTransitionError,
    JobNotFoundError,
    ScreenshotError,
    ValidationError,
)

from .analyzer import AnalysisProposal, ContentAnalyzer
from .config import PipelineConfig
from .diff import diff_resource
from .review import ReviewService

if TYPE_CHECKING:
    from resource_updates.collection.screenshots import ScreenshotCapture

logger = logging.getLogger(__name__)

RESUMABLE_STATUSES = (
    JobStatus.PENDING,
    JobStatus.SCRAPING,
    JobStatus.ANALYZING,
    JobStatus.SCREENSHOTS,
)


class JobOrchestrator:
    """Creates jobs and runs them up to review (or to applied, when automatic)."""

    def __init__(
        self,
        resources: ResourceRepository,
        jobs: JobStore,
        collector: SourceCollector,
        analyzer: ContentAnalyzer | None = None,
        *,
        config: PipelineConfig | None = None,
        screenshotter: "ScreenshotCapture | None" = None,
        review: ReviewService | None = None,
    ) -> None:
        self.resources = resources
        self.jobs = jobs
        self.collector = collector
        self.analyzer = analyzer
        self.config = config or PipelineConfig()
        self.screenshotter = screenshotter
        self.review = review or ReviewService(resources, jobs, self.config)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def create_job(
        self,
        resource_slug: str,
        trigger: TriggerKind = TriggerKind.MANUAL,
        triggered_by: str | None = None,
        *,
        retry_of: str | None = None,
    ) -> UpdateJob:
        """Create a pending job for a resource.

        Raises:
            ResourceNotFoundError: Unknown slug.
            JobConflictError: The resource already has an unfinished job.
        """
        self.resources.require(resource_slug)
        job = UpdateJob(
            resource_slug=resource_slug,
            trigger=TriggerKind(trigger),
            triggered_by=triggered_by,
            retry_of=retry_of,
        )
        self.jobs.create(job)
        logger.info("Created job %s for %s (%s)", job.id, resource_slug, job.trigger.value)
        return job

    def get_job(self, job_id: str) -> UpdateJob | None:
        return self.jobs.get(job_id)

    def require_job(self, job_id: str) -> UpdateJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def process_job(self, job_id: str) -> UpdateJob:
        """Run a pending job through every stage.

        Stage failures end in ``failed`` on the returned job, not as an
        exception.
        """
        job = self.require_job(job_id)
        if job.status != JobStatus.PENDING:
            raise InvalidTransitionError(job.id, job.status.value, JobStatus.SCRAPING.value)
        return self._advance(job)

    def resume_job(self, job_id: str) -> UpdateJob:
        """Continue a job that stopped before review, reusing persisted stage output.

        A job interrupted between approval and apply is committed from its
        persisted selection.
        """
        job = self.require_job(job_id)
        if job.status == JobStatus.READY_FOR_REVIEW:
            return job
        if job.status == JobStatus.APPROVED:
            logger.info("Completing approved job %s", job.id)
            return self.review.complete_approved(job)
        if job.status not in RESUMABLE_STATUSES:
            raise InvalidTransitionError(job.id, job.status.value, JobStatus.SCRAPING.value)
        logger.info("Resuming job %s from %s", job.id, job.status.value)
        return self._advance(job)

    def retry_job(self, job_id: str, triggered_by: str | None = None) -> UpdateJob:
        """Create a fresh job for the resource of a failed job."""
        failed = self.require_job(job_id)
        if failed.status != JobStatus.FAILED:
            raise ValidationError(f"Only failed jobs can be retried (job {job_id} is {failed.status.value})")
        return self.create_job(
            failed.resource_slug,
            TriggerKind.MANUAL,
            triggered_by or failed.triggered_by,
            retry_of=failed.id,
        )

    def run_resource(
        self,
        resource_slug: str,
        trigger: TriggerKind = TriggerKind.MANUAL,
        triggered_by: str | None = None,
    ) -> UpdateJob:
        job = self.create_job(resource_slug, trigger, triggered_by)
        return self.process_job(job.id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        resource_slug: str | None = None,
        limit: int | None = 50,
        offset: int = 0,
    ) -> list[UpdateJob]:
        return self.jobs.list_jobs(status=status, resource_slug=resource_slug, limit=limit, offset=offset)

    def pending_review_jobs(self, limit: int = 20, offset: int = 0) -> tuple[list[UpdateJob], int]:
        """Jobs awaiting review, newest first, plus the total count."""
        waiting = self.jobs.list_jobs(status=JobStatus.READY_FOR_REVIEW)
        return waiting[offset : offset + limit], len(waiting)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _advance(self, job: UpdateJob) -> UpdateJob:
        resource = self.resources.get(job.resource_slug)
        if resource is None:
            return self._fail(job, f"Resource '{job.resource_slug}' no longer exists", stage="scraping")

        try:
            if job.status == JobStatus.PENDING:
                job.transition_to(JobStatus.SCRAPING)
                self.jobs.save(job)

            if job.status == JobStatus.SCRAPING:
                if not self._collect(job, resource):
                    return job
                job.transition_to(JobStatus.ANALYZING)
                self.jobs.save(job)

            if job.status == JobStatus.ANALYZING:
                if not self._analyze(job, resource):
                    return job
                if self.config.capture_screenshots and self.screenshotter is not None:
                    job.transition_to(JobStatus.SCREENSHOTS)
                    self.jobs.save(job)

            if job.status == JobStatus.SCREENSHOTS and self.screenshotter is not None:
                self._capture_screenshots(job, resource)
        except Exception as exc:  # noqa: BLE001 - a stage crash is recorded on the job
            logger.exception("Job %s crashed during %s", job.id, job.status.value)
            return self._fail(job, f"Unexpected error: {exc}", stage=job.status.value, error=exc)

        self._propose(job, resource)

        if self.config.auto_apply or not job.proposed_changes:
            return self.review.auto_apply(job)
        return job

    def _collect(self, job: UpdateJob, resource: Resource) -> bool:
        if job.scraped_at is not None:
            logger.debug("Job %s: reusing collected content", job.id)
            return True

        result = self.collector.collect(resource)
        job.collected = [
            ContentRef(
                source=source.source,
                url=source.url,
                path=self.jobs.write_content(job.id, source.source, source.text),
                fetched_at=source.fetched_at,
                characters=source.characters,
                title=source.title,
            )
            for source in result.sources
        ]
        job.source_errors = list(result.errors)
        job.facts = dict(result.facts)
        job.scraped_at = datetime.now(timezone.utc)
        self.jobs.save(job)

        if result.total_failure or result.attempted == 0:
            errors = "; ".join(f"{e.source}: {e.error}" for e in result.errors) or "no sources to collect"
            self._fail(job, f"All sources failed: {errors}", stage="scraping")
            return False
        return True

    def _load_collection(self, job: UpdateJob) -> CollectionResult:
        sources = [
            CollectedSource(
                source=ref.source,
                url=ref.url,
                text=self.jobs.read_content(ref),
                title=ref.title,
                fetched_at=ref.fetched_at,
            )
            for ref in job.collected
        ]
        return CollectionResult(sources=sources, errors=list(job.source_errors), facts=dict(job.facts))

    def _analyze(self, job: UpdateJob, resource: Resource) -> bool:
        if job.analyzed_at is not None:
            logger.debug("Job %s: reusing persisted analysis", job.id)
            return True

        content = self._load_collection(job).aggregated_text(self.config.max_prompt_chars)
        if self.analyzer is None:
            logger.warning("Job %s: no analyzer configured, proposing repository facts only", job.id)
        elif len(content.strip()) <= self.config.min_analysis_chars:
            logger.info(
                "Job %s: only %d characters collected, skipping analysis",
                job.id,
                len(content.strip()),
            )
        else:
            try:
                proposal = self.analyzer.analyze(resource, content)
            except AnalysisError as exc:
                self._fail(job, f"Analysis failed: {exc}", stage="analyzing", error=exc)
                return False
            job.analysis = proposal.to_dict()
            job.analysis_summary = proposal.summary
            job.analysis_confidence = proposal.confidence
            job.analysis_model = proposal.model
            job.suggested_tags = list(proposal.tags)

        job.analyzed_at = datetime.now(timezone.utc)
        self.jobs.save(job)
        return True

    def _capture_screenshots(self, job: UpdateJob, resource: Resource) -> None:
        job.old_screenshots = list(resource.screenshots)
        if not job.new_screenshots and resource.url:
            try:
                job.new_screenshots = [self.screenshotter.capture(resource.url, resource.slug)]
            except ScreenshotError as exc:
                logger.warning("Job %s: screenshot failed: %s", job.id, exc)
                job.screenshot_errors.append(str(exc))
        self.jobs.save(job)

    def _propose(self, job: UpdateJob, resource: Resource) -> None:
        proposal = AnalysisProposal.from_dict(job.analysis) if job.analysis else None
        job.proposed_changes = diff_resource(
            resource,
            proposal,
            job.facts,
            self.config,
            new_screenshots=job.new_screenshots,
        )
        job.transition_to(JobStatus.READY_FOR_REVIEW)
        self.jobs.save(job)
        logger.info("Job %s: %d change(s) proposed for %s", job.id, len(job.proposed_changes), job.resource_slug)

    def _fail(
        self,
        job: UpdateJob,
        message: str,
        *,
        stage: str,
        error: Exception | None = None,
    ) -> UpdateJob:
        job.transition_to(JobStatus.FAILED)
        job.error_message = message
        job.error_details = {"stage": stage}
        if error is not None:
            job.error_details["type"] = type(error).__name__
        self.jobs.save(job)
        logger.error("Job %s failed: %s", job.id, message)
        return job
