"""Update job records, the job state machine and job persistence.

An :class:`UpdateJob` is the audit trail for one attempt to refresh one
resource. Jobs are never deleted. Status changes go through
:func:`validate_transition`, which rejects every move that is not in
:data:`ALLOWED_TRANSITIONS`, including any move out of a terminal state.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, List, Mapping

from resource_updates import paths, utils
from resource_updates.errors import InvalidTransitionError, JobConflictError, RepositoryError

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    SCRAPING = "scraping"
    ANALYZING = "analyzing"
    SCREENSHOTS = "screenshots"
    READY_FOR_REVIEW = "ready_for_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class TriggerKind(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


TERMINAL_STATUSES = frozenset({JobStatus.APPLIED, JobStatus.REJECTED, JobStatus.FAILED})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.SCRAPING, JobStatus.FAILED}),
    JobStatus.SCRAPING: frozenset({JobStatus.ANALYZING, JobStatus.FAILED}),
    JobStatus.ANALYZING: frozenset(
        {JobStatus.SCREENSHOTS, JobStatus.READY_FOR_REVIEW, JobStatus.FAILED}
    ),
    JobStatus.SCREENSHOTS: frozenset({JobStatus.READY_FOR_REVIEW, JobStatus.FAILED}),
    JobStatus.READY_FOR_REVIEW: frozenset({JobStatus.APPROVED, JobStatus.REJECTED}),
    JobStatus.APPROVED: frozenset({JobStatus.APPLIED, JobStatus.FAILED}),
    JobStatus.REJECTED: frozenset(),
    JobStatus.APPLIED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def validate_transition(job_id: str, current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` unless ``current -> target`` is allowed."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(job_id, current.value, target.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class ProposedChange:
    """A single field-level candidate edit. Lives only inside its job."""

    field: str
    label: str
    old_value: Any
    new_value: Any
    confidence: float
    reason: str
    is_breaking: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence for {self.field} must be within [0, 1], got {self.confidence}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "label": self.label,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "confidence": self.confidence,
            "reason": self.reason,
            "is_breaking": self.is_breaking,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ProposedChange":
        return cls(
            field=payload["field"],
            label=payload.get("label", payload["field"]),
            old_value=payload.get("old_value"),
            new_value=payload.get("new_value"),
            confidence=float(payload.get("confidence", 0.0)),
            reason=payload.get("reason", ""),
            is_breaking=bool(payload.get("is_breaking", False)),
        )


@dataclass(frozen=True)
class SourceError:
    """A fetch that failed for one source of one job."""

    source: str  # "page" | "documentation" | "repository" | "readme"
    url: str
    error: str
    occurred_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "url": self.url,
            "error": self.error,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SourceError":
        return cls(
            source=payload["source"],
            url=payload["url"],
            error=payload["error"],
            occurred_at=datetime.fromisoformat(payload["occurred_at"]),
        )


@dataclass(frozen=True)
class ContentRef:
    """Pointer to collected text stored beside the job."""

    source: str
    url: str
    path: str
    fetched_at: datetime
    characters: int
    title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "url": self.url,
            "path": self.path,
            "fetched_at": self.fetched_at.isoformat(),
            "characters": self.characters,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ContentRef":
        return cls(
            source=payload["source"],
            url=payload["url"],
            path=payload["path"],
            fetched_at=datetime.fromisoformat(payload["fetched_at"]),
            characters=payload.get("characters", 0),
            title=payload.get("title"),
        )


@dataclass
class UpdateJob:
    """One attempt to refresh one resource.

    Attributes are grouped by the stage that fills them in. Stage outputs
    are persisted before the job advances, so an interrupted job still
    shows everything gathered up to that point.
    """

    resource_slug: str
    trigger: TriggerKind
    triggered_by: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    completed_at: datetime | None = None
    retry_of: str | None = None

    # Collection
    collected: List[ContentRef] = field(default_factory=list)
    source_errors: List[SourceError] = field(default_factory=list)
    facts: dict[str, Any] = field(default_factory=dict)
    scraped_at: datetime | None = None

    # Analysis
    analysis: dict[str, Any] | None = None
    analysis_summary: str | None = None
    analysis_confidence: float | None = None
    analysis_model: str | None = None
    analyzed_at: datetime | None = None
    suggested_tags: List[str] = field(default_factory=list)
    proposed_changes: List[ProposedChange] = field(default_factory=list)

    # Screenshots
    old_screenshots: List[str] = field(default_factory=list)
    new_screenshots: List[str] = field(default_factory=list)
    screenshot_errors: List[str] = field(default_factory=list)

    # Review
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    selected_fields: List[str] | None = None

    # Failure
    error_message: str | None = None
    error_details: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def proposed_fields(self) -> list[str]:
        return [change.field for change in self.proposed_changes]

    def transition_to(self, target: JobStatus) -> JobStatus:
        """Move to ``target`` if the state machine allows it; returns the old status."""
        previous = self.status
        validate_transition(self.id, previous, target)
        self.status = target
        self.updated_at = _now()
        if target.is_terminal:
            self.completed_at = self.updated_at
        logger.info("Job %s: %s -> %s", self.id, previous.value, target.value)
        return previous

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resource_slug": self.resource_slug,
            "trigger": self.trigger.value,
            "triggered_by": self.triggered_by,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": _format_datetime(self.completed_at),
            "retry_of": self.retry_of,
            "collected": [ref.to_dict() for ref in self.collected],
            "source_errors": [error.to_dict() for error in self.source_errors],
            "facts": self.facts,
            "scraped_at": _format_datetime(self.scraped_at),
            "analysis": self.analysis,
            "analysis_summary": self.analysis_summary,
            "analysis_confidence": self.analysis_confidence,
            "analysis_model": self.analysis_model,
            "analyzed_at": _format_datetime(self.analyzed_at),
            "suggested_tags": self.suggested_tags,
            "proposed_changes": [change.to_dict() for change in self.proposed_changes],
            "old_screenshots": self.old_screenshots,
            "new_screenshots": self.new_screenshots,
            "screenshot_errors": self.screenshot_errors,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _format_datetime(self.reviewed_at),
            "review_notes": self.review_notes,
            "selected_fields": self.selected_fields,
            "error_message": self.error_message,
            "error_details": self.error_details,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UpdateJob":
        return cls(
            id=payload["id"],
            resource_slug=payload["resource_slug"],
            trigger=TriggerKind(payload["trigger"]),
            triggered_by=payload.get("triggered_by"),
            status=JobStatus(payload["status"]),
            created_at=datetime.fromisoformat(payload["created_at"]),
            updated_at=datetime.fromisoformat(payload["updated_at"]),
            completed_at=_parse_datetime(payload.get("completed_at")),
            retry_of=payload.get("retry_of"),
            collected=[ContentRef.from_dict(r) for r in payload.get("collected", [])],
            source_errors=[SourceError.from_dict(e) for e in payload.get("source_errors", [])],
            facts=dict(payload.get("facts", {})),
            scraped_at=_parse_datetime(payload.get("scraped_at")),
            analysis=payload.get("analysis"),
            analysis_summary=payload.get("analysis_summary"),
            analysis_confidence=payload.get("analysis_confidence"),
            analysis_model=payload.get("analysis_model"),
            analyzed_at=_parse_datetime(payload.get("analyzed_at")),
            suggested_tags=list(payload.get("suggested_tags", [])),
            proposed_changes=[
                ProposedChange.from_dict(c) for c in payload.get("proposed_changes", [])
            ],
            old_screenshots=list(payload.get("old_screenshots", [])),
            new_screenshots=list(payload.get("new_screenshots", [])),
            screenshot_errors=list(payload.get("screenshot_errors", [])),
            reviewed_by=payload.get("reviewed_by"),
            reviewed_at=_parse_datetime(payload.get("reviewed_at")),
            review_notes=payload.get("review_notes"),
            selected_fields=payload.get("selected_fields"),
            error_message=payload.get("error_message"),
            error_details=payload.get("error_details"),
        )


class JobStore:
    """Persists jobs as JSON documents plus their collected text artifacts."""

    def __init__(self, root: Path | None = None, content_root: Path | None = None) -> None:
        self.root = root or paths.get_jobs_root()
        self.content_root = content_root or paths.get_content_root()
        utils.ensure_directory(self.root)
        utils.ensure_directory(self.content_root)
        self._lock = threading.RLock()

    def _job_path(self, job_id: str) -> Path:
        return self.root / f"{job_id}.json"

    def get(self, job_id: str) -> UpdateJob | None:
        path = self._job_path(job_id)
        if not path.exists():
            return None
        try:
            return UpdateJob.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, KeyError, ValueError) as exc:
            raise RepositoryError(f"Corrupt job document {path}: {exc}") from exc

    def save(self, job: UpdateJob) -> None:
        with self._lock:
            utils.atomic_write_text(
                self._job_path(job.id),
                json.dumps(job.to_dict(), indent=2, default=str),
            )

    def create(self, job: UpdateJob) -> UpdateJob:
        """Store a new job unless its resource already has an unfinished one."""
        with self._lock:
            active = self.find_active(job.resource_slug)
            if active is not None:
                raise JobConflictError(job.resource_slug, active.id)
            self.save(job)
        return job

    def iter_jobs(self) -> Iterator[UpdateJob]:
        for path in self.root.glob("*.json"):
            job = self.get(path.stem)
            if job is not None:
                yield job

    def find_active(self, resource_slug: str) -> UpdateJob | None:
        for job in self.iter_jobs():
            if job.resource_slug == resource_slug and not job.is_terminal:
                return job
        return None

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        resource_slug: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[UpdateJob]:
        """Jobs matching the filters, newest first."""
        jobs = [
            job
            for job in self.iter_jobs()
            if (status is None or job.status == status)
            and (resource_slug is None or job.resource_slug == resource_slug)
        ]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return jobs[offset:end]

    def write_content(self, job_id: str, name: str, text: str) -> str:
        """Store collected text for a job; returns the path relative to the content root."""
        relative = f"{job_id}/{name}.md"
        utils.atomic_write_text(self.content_root / relative, text)
        return relative

    def read_content(self, ref: ContentRef) -> str:
        return (self.content_root / ref.path).read_text(encoding="utf-8")
