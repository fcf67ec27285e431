"""Catalog records: resources, changelog entries and update jobs."""

from __future__ import annotations

from .jobs import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    ContentRef,
    JobStatus,
    JobStore,
    ProposedChange,
    SourceError,
    TriggerKind,
    UpdateJob,
    validate_transition,
)
from .resources import (
    HASHED_FIELDS,
    ChangelogEntry,
    FieldChange,
    Resource,
    ResourceRepository,
    compute_content_hash,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "ContentRef",
    "JobStatus",
    "JobStore",
    "ProposedChange",
    "SourceError",
    "TriggerKind",
    "UpdateJob",
    "validate_transition",
    "HASHED_FIELDS",
    "ChangelogEntry",
    "FieldChange",
    "Resource",
    "ResourceRepository",
    "compute_content_hash",
]
