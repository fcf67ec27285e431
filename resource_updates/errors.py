"""Exception hierarchy for the resource update pipeline.

Stage-local failures (a page that would not load, a model reply that did
not parse) are recorded onto the job and never reach callers. The
``ValidationError`` family is what reviewer-facing operations raise; each
is raised before any mutation happens.
"""

from __future__ import annotations


class UpdatePipelineError(RuntimeError):
    """Base class for every error raised by this package."""


class ResourceNotFoundError(UpdatePipelineError):
    """No resource exists with the requested slug."""


class RepositoryError(UpdatePipelineError):
    """A catalog write or its paired changelog append failed."""


class InvalidTransitionError(UpdatePipelineError):
    """A job status change that the state machine does not allow."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Job {job_id} cannot move from '{current}' to '{target}'"
        )
        self.job_id = job_id
        self.current = current
        self.target = target


class JobConflictError(UpdatePipelineError):
    """The resource already has an update job that has not finished."""

    def __init__(self, resource_slug: str, job_id: str) -> None:
        super().__init__(
            f"An update job is already in progress for {resource_slug} (job {job_id})"
        )
        self.resource_slug = resource_slug
        self.job_id = job_id


class NotAuthorizedError(UpdatePipelineError):
    """The caller does not hold the moderator capability."""


class ValidationError(UpdatePipelineError):
    """A reviewer action was rejected before touching any state."""


class JobNotFoundError(ValidationError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class JobNotReviewableError(ValidationError):
    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Job {job_id} is not ready for review (status: {status})")
        self.job_id = job_id
        self.status = status


class FieldNotProposedError(ValidationError):
    def __init__(self, job_id: str, fields: list[str]) -> None:
        joined = ", ".join(fields)
        super().__init__(f"Job {job_id} did not propose changes to: {joined}")
        self.job_id = job_id
        self.fields = fields


class MissingRejectionReasonError(ValidationError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Rejecting job {job_id} requires review notes")
        self.job_id = job_id


class CollectorError(UpdatePipelineError):
    """Fetching one source failed. Recorded on the job, never fatal alone."""


class AnalysisError(UpdatePipelineError):
    """The text-generation reply could not be turned into a proposal."""


class ScreenshotError(UpdatePipelineError):
    """A screenshot capture failed. Recorded on the job, never fatal."""
