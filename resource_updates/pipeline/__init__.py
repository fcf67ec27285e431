"""Resource update pipeline: analysis, diffing, orchestration and review."""

from .analyzer import AnalysisProposal, ContentAnalyzer, extract_json_object
from .config import PipelineConfig, PipelinePoliteness
from .diff import FIELD_LABELS, diff_resource
from .orchestrator import JobOrchestrator
from .review import Caller, ReviewService, RoleAuthorizer, summarize_changes
from .runner import BatchResult, run_batch, run_due

__all__ = [
    "AnalysisProposal",
    "BatchResult",
    "Caller",
    "ContentAnalyzer",
    "FIELD_LABELS",
    "JobOrchestrator",
    "PipelineConfig",
    "PipelinePoliteness",
    "ReviewService",
    "RoleAuthorizer",
    "diff_resource",
    "extract_json_object",
    "run_batch",
    "run_due",
    "summarize_changes",
]
