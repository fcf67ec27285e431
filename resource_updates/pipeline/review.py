"""Moderator review and the shared apply path.

Reviewed approval and unattended auto-apply both commit through
:meth:`ReviewService._commit`; they differ only in which proposed changes
are selected.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from resource_updates.catalog.jobs import JobStatus, JobStore, ProposedChange, UpdateJob
from resource_updates.catalog.resources import ChangelogEntry, FieldChange, ResourceRepository
from resource_updates.errors import (
    FieldNotProposedError,
    JobNotFoundError,
    JobNotReviewableError,
    MissingRejectionReasonError,
    NotAuthorizedError,
    ValidationError,
)

from .config import PipelineConfig
from .diff import OBJECTIVE_FIELDS, label_for

logger = logging.getLogger(__name__)

ROLE_HIERARCHY = ("user", "editor", "moderator", "admin", "superadmin")
STATS_FIELDS = ("github_stars", "github_forks", "github_open_issues")

SUMMARY_VALUE_LIMIT = 50
SUMMARY_LIST_ITEMS = 3


@dataclass(frozen=True)
class Caller:
    """Whoever is performing a review action."""

    user_id: str
    role: str = "user"


SYSTEM_CALLER = Caller(user_id="system", role="superadmin")


class RoleAuthorizer:
    """Grants review rights to callers at or above ``minimum_role``."""

    def __init__(self, minimum_role: str = "moderator") -> None:
        if minimum_role not in ROLE_HIERARCHY:
            raise ValueError(f"Unknown role: {minimum_role}")
        self.minimum_role = minimum_role

    def is_authorized(self, caller: Caller) -> bool:
        if caller.role not in ROLE_HIERARCHY:
            return False
        return ROLE_HIERARCHY.index(caller.role) >= ROLE_HIERARCHY.index(self.minimum_role)

    def require(self, caller: Caller) -> None:
        if not self.is_authorized(caller):
            raise NotAuthorizedError(
                f"User {caller.user_id} ({caller.role}) is not allowed to review resource updates"
            )


def is_auto_eligible(change: ProposedChange, config: PipelineConfig) -> bool:
    """Whether an unattended run may commit ``change`` without a reviewer."""
    if change.is_breaking:
        return False
    if change.field in OBJECTIVE_FIELDS:
        return True
    return change.field == "description" and change.confidence > config.confidence_threshold


def _format_value(value: Any) -> str:
    if value is None or value == "" or value == []:
        return "(empty)"
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
        shown = ", ".join(items[:SUMMARY_LIST_ITEMS])
        if len(items) > SUMMARY_LIST_ITEMS:
            shown += f" +{len(items) - SUMMARY_LIST_ITEMS} more"
        return f"[{shown}]"
    text = str(value)
    if len(text) > SUMMARY_VALUE_LIMIT:
        return text[:SUMMARY_VALUE_LIMIT] + "..."
    return text


def summarize_changes(changes: Iterable[FieldChange]) -> str:
    """One line per field: ``Label: old → new``."""
    lines = [
        f"{label_for(change.field)}: {_format_value(change.old_value)} → {_format_value(change.new_value)}"
        for change in changes
    ]
    return "\n".join(lines) if lines else "No changes"


def build_changelog_entry(
    job: UpdateJob,
    changes: Sequence[ProposedChange],
    *,
    source: str,
    applied_by: str,
    applied_at: datetime,
) -> ChangelogEntry:
    field_changes = tuple(
        FieldChange(field=change.field, old_value=change.old_value, new_value=change.new_value)
        for change in changes
    )
    return ChangelogEntry(
        resource_slug=job.resource_slug,
        changes=field_changes,
        summary=summarize_changes(field_changes),
        source=source,
        applied_at=applied_at,
        job_id=job.id,
        applied_by=applied_by,
        source_urls=tuple(dict.fromkeys(ref.url for ref in job.collected)),
        stats_snapshot={name: job.facts[name] for name in STATS_FIELDS if name in job.facts},
    )


class ReviewService:
    """Approve, reject and auto-apply jobs that are ready for review."""

    def __init__(
        self,
        resources: ResourceRepository,
        jobs: JobStore,
        config: PipelineConfig | None = None,
        authorizer: RoleAuthorizer | None = None,
    ) -> None:
        self.resources = resources
        self.jobs = jobs
        self.config = config or PipelineConfig()
        self.authorizer = authorizer or RoleAuthorizer()
        self._lock = threading.Lock()

    def _reviewable(self, job_id: str) -> UpdateJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.READY_FOR_REVIEW:
            raise JobNotReviewableError(job_id, job.status.value)
        return job

    def approve(
        self,
        job_id: str,
        selected_fields: Sequence[str],
        notes: str | None = None,
        *,
        caller: Caller,
    ) -> UpdateJob:
        """Apply the selected proposed changes and close the job as applied.

        Raises:
            NotAuthorizedError: Caller is below moderator.
            JobNotFoundError: No such job.
            JobNotReviewableError: Job is not ready for review.
            FieldNotProposedError: A selected field was never proposed.
            ValidationError: Nothing was selected; reject the job instead.
        """
        self.authorizer.require(caller)
        with self._lock:
            job = self._reviewable(job_id)
            selected = list(dict.fromkeys(selected_fields))
            if not selected:
                raise ValidationError(f"Job {job_id}: select at least one proposed field, or reject the job")
            unknown = [name for name in selected if name not in job.proposed_fields]
            if unknown:
                raise FieldNotProposedError(job_id, unknown)

            changes = [change for change in job.proposed_changes if change.field in selected]
            return self._commit(
                job,
                changes,
                reviewer=caller.user_id,
                notes=notes,
                source="reviewed",
            )

    def reject(self, job_id: str, notes: str, *, caller: Caller) -> UpdateJob:
        """Close the job as rejected without touching the resource.

        Raises:
            NotAuthorizedError: Caller is below moderator.
            JobNotFoundError: No such job.
            JobNotReviewableError: Job is not ready for review.
            MissingRejectionReasonError: ``notes`` is empty or blank.
        """
        self.authorizer.require(caller)
        with self._lock:
            job = self._reviewable(job_id)
            if not notes or not notes.strip():
                raise MissingRejectionReasonError(job_id)

            job.transition_to(JobStatus.REJECTED)
            job.reviewed_by = caller.user_id
            job.reviewed_at = datetime.now(timezone.utc)
            job.review_notes = notes.strip()
            self.jobs.save(job)
        logger.info("Job %s rejected by %s", job_id, caller.user_id)
        return job

    def auto_apply(self, job: UpdateJob) -> UpdateJob:
        """Commit the eligible changes of an unattended job; discard the rest."""
        with self._lock:
            eligible = [c for c in job.proposed_changes if is_auto_eligible(c, self.config)]
            discarded = [c.field for c in job.proposed_changes if c not in eligible]
            if not job.proposed_changes:
                notes = "No changes detected"
            else:
                notes = "Applied automatically"
                if discarded:
                    notes += f"; left unapplied: {', '.join(discarded)}"
            return self._commit(
                job,
                eligible,
                reviewer=SYSTEM_CALLER.user_id,
                notes=notes,
                source="automatic",
            )

    def complete_approved(self, job: UpdateJob) -> UpdateJob:
        """Finish a job whose commit was interrupted after approval.

        A resource already stamped with this job's id was written, so the job
        is only closed. Otherwise the persisted selection is applied again.
        """
        with self._lock:
            if job.status != JobStatus.APPROVED:
                raise JobNotReviewableError(job.id, job.status.value)
            resource = self.resources.get(job.resource_slug)
            if resource is not None and resource.last_update_job_id == job.id:
                job.transition_to(JobStatus.APPLIED)
                self.jobs.save(job)
                logger.info("Job %s was already applied to %s", job.id, job.resource_slug)
                return job

            selected = set(job.selected_fields or [])
            changes = [change for change in job.proposed_changes if change.field in selected]
            source = "automatic" if job.reviewed_by == SYSTEM_CALLER.user_id else "reviewed"
            return self._apply(job, changes, source=source)

    def _commit(
        self,
        job: UpdateJob,
        changes: Sequence[ProposedChange],
        *,
        reviewer: str,
        notes: str | None,
        source: str,
    ) -> UpdateJob:
        job.transition_to(JobStatus.APPROVED)
        job.reviewed_by = reviewer
        job.reviewed_at = datetime.now(timezone.utc)
        job.review_notes = notes
        job.selected_fields = [change.field for change in changes]
        self.jobs.save(job)
        return self._apply(job, changes, source=source)

    def _apply(
        self,
        job: UpdateJob,
        changes: Sequence[ProposedChange],
        *,
        source: str,
    ) -> UpdateJob:
        now = datetime.now(timezone.utc)
        entry = None
        if changes:
            entry = build_changelog_entry(job, changes, source=source, applied_by=job.reviewed_by, applied_at=now)
        values = {change.field: change.new_value for change in changes}

        try:
            self.resources.apply_changes(job.resource_slug, values, entry, job_id=job.id, applied_at=now)
        except Exception as exc:  # noqa: BLE001 - recorded on the job, then re-raised
            job.transition_to(JobStatus.FAILED)
            job.error_message = f"Apply failed: {exc}"
            job.error_details = {"stage": "apply", "type": type(exc).__name__}
            self.jobs.save(job)
            logger.error("Job %s: apply failed: %s", job.id, exc)
            raise

        job.transition_to(JobStatus.APPLIED)
        self.jobs.save(job)
        logger.info(
            "Job %s applied %d change(s) to %s (%s)",
            job.id,
            len(changes),
            job.resource_slug,
            source,
        )
        return job
