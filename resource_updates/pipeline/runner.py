"""Batch runner for resource update jobs.

A batch creates one job per resource and processes them on a bounded
thread pool. Third-party rate limits are shared by every job in the batch
through the collector's and analyzer's ``ServiceRateLimiter``.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from resource_updates.catalog.jobs import JobStatus, TriggerKind, UpdateJob
from resource_updates.errors import JobConflictError, UpdatePipelineError

from .orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """What happened to one resource in a batch."""

    resource_slug: str
    job_id: str | None = None
    status: str | None = None
    changes: int = 0
    message: str | None = None

    @classmethod
    def from_job(cls, job: UpdateJob) -> "JobOutcome":
        return cls(
            resource_slug=job.resource_slug,
            job_id=job.id,
            status=job.status.value,
            changes=len(job.proposed_changes),
            message=job.error_message,
        )

    def to_dict(self) -> dict:
        return {
            "resource_slug": self.resource_slug,
            "job_id": self.job_id,
            "status": self.status,
            "changes": self.changes,
            "message": self.message,
        }


@dataclass
class BatchResult:
    """Result of running a batch of update jobs.

    Attributes:
        started_at: When the batch started.
        completed_at: When the batch finished.
        completed: Jobs that ran to review, applied or failed.
        skipped: Resources not processed (active job or cancelled batch).
        errors: Resources whose job could not be created or run.
        cancelled: Whether the batch was aborted.
    """

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    completed: list[JobOutcome] = field(default_factory=list)
    skipped: list[JobOutcome] = field(default_factory=list)
    errors: list[JobOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def count(self, status: JobStatus) -> int:
        return sum(1 for outcome in self.completed if outcome.status == status.value)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "cancelled": self.cancelled,
            "completed": [outcome.to_dict() for outcome in self.completed],
            "skipped": [outcome.to_dict() for outcome in self.skipped],
            "errors": [outcome.to_dict() for outcome in self.errors],
        }

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            f"Batch completed in {self.duration_seconds:.1f}s" + (" (cancelled)" if self.cancelled else ""),
            f"  Jobs: {len(self.completed)}",
            f"    - Ready for review: {self.count(JobStatus.READY_FOR_REVIEW)}",
            f"    - Applied: {self.count(JobStatus.APPLIED)}",
            f"    - Failed: {self.count(JobStatus.FAILED)}",
            f"  Skipped: {len(self.skipped)}",
            f"  Errors: {len(self.errors)}",
        ]
        return "\n".join(lines)


def run_batch(
    orchestrator: JobOrchestrator,
    resource_slugs: Iterable[str],
    *,
    parallelism: int | None = None,
    trigger: TriggerKind = TriggerKind.SCHEDULED,
    triggered_by: str | None = None,
    cancel_event: threading.Event | None = None,
) -> BatchResult:
    """Create and process one job per resource with bounded parallelism.

    Setting ``cancel_event`` stops the batch between jobs: jobs already
    running finish their current stage and the rest are skipped.
    """
    slugs = list(dict.fromkeys(resource_slugs))
    workers = parallelism or orchestrator.config.parallelism
    cancel_event = cancel_event or threading.Event()
    result = BatchResult()
    lock = threading.Lock()

    logger.info("Starting batch of %d resource(s) with parallelism %d", len(slugs), workers)

    def run_one(slug: str) -> None:
        if cancel_event.is_set():
            with lock:
                result.skipped.append(JobOutcome(slug, message="Batch cancelled"))
            return
        try:
            job = orchestrator.run_resource(slug, trigger, triggered_by)
        except JobConflictError as exc:
            with lock:
                result.skipped.append(JobOutcome(slug, job_id=exc.job_id, message=str(exc)))
            return
        except UpdatePipelineError as exc:
            logger.error("Resource %s could not be processed: %s", slug, exc)
            with lock:
                result.errors.append(JobOutcome(slug, message=str(exc)))
            return
        except Exception as exc:  # noqa: BLE001 - one resource never sinks the batch
            logger.exception("Resource %s crashed", slug)
            with lock:
                result.errors.append(JobOutcome(slug, message=f"{type(exc).__name__}: {exc}"))
            return
        with lock:
            result.completed.append(JobOutcome.from_job(job))

    if slugs:
        with ThreadPoolExecutor(max_workers=min(workers, len(slugs))) as executor:
            futures = [executor.submit(run_one, slug) for slug in slugs]
            for future in as_completed(futures):
                future.result()

    result.cancelled = cancel_event.is_set()
    result.completed_at = datetime.now(timezone.utc)
    logger.info("Batch finished: %d completed, %d skipped, %d errors",
                len(result.completed), len(result.skipped), len(result.errors))
    return result


def run_due(
    orchestrator: JobOrchestrator,
    *,
    limit: int = 10,
    parallelism: int | None = None,
    cancel_event: threading.Event | None = None,
) -> BatchResult:
    """Run a scheduled batch over the resources whose refresh interval has elapsed."""
    due = orchestrator.resources.resources_due_for_update(limit=limit)
    return run_batch(
        orchestrator,
        [resource.slug for resource in due],
        parallelism=parallelism,
        trigger=TriggerKind.SCHEDULED,
        triggered_by="scheduler",
        cancel_event=cancel_event,
    )
