"""Configuration for resource update runs.

This module defines configuration dataclasses for pipeline execution,
including politeness settings that keep third-party quotas intact.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resource_updates.config import ProjectConfig


@dataclass(frozen=True)
class PipelinePoliteness:
    """Rate limiting for third-party services.

    Intervals are enforced per service across the whole batch, not per job.

    Attributes:
        page_interval: Minimum seconds between plain page fetches.
        scraper_interval: Minimum seconds between scraping-backend calls.
        repository_interval: Minimum seconds between repository API calls.
        model_interval: Minimum seconds between text-generation calls.
        screenshot_interval: Minimum seconds between screenshot captures.
    """

    page_interval: float = 1.0
    scraper_interval: float = 1.0
    repository_interval: float = 0.2
    model_interval: float = 1.0
    screenshot_interval: float = 2.0

    def interval_for(self, service: str) -> float:
        return {
            "page": self.page_interval,
            "scraper": self.scraper_interval,
            "repository": self.repository_interval,
            "model": self.model_interval,
            "screenshot": self.screenshot_interval,
        }.get(service, 0.0)


APPLY_POLICIES = ("review", "automatic")


@dataclass
class PipelineConfig:
    """Configuration for a resource update run.

    Attributes:
        politeness: Per-service rate limits.
        confidence_threshold: A suggested description must score above this
            to be proposed at all.
        breaking_confidence_floor: Content changes proposed below this
            confidence are flagged as breaking.
        min_description_length: Shorter suggested descriptions are ignored.
        trivial_similarity: Texts at or above this similarity ratio count as
            unchanged.
        min_analysis_chars: Collected text shorter than this skips analysis.
        max_prompt_chars: Bound on collected text sent to the model.
        max_source_chars: Bound on text extracted from one page.
        fetch_timeout: Seconds before a page fetch is abandoned.
        parallelism: Jobs processed concurrently in a batch.
        source_workers: Sources fetched concurrently within one job.
        capture_screenshots: Run the screenshot stage.
        apply_policy: "review" pauses for a moderator; "automatic" commits
            eligible changes without one.
        model: Text-generation model identifier.
    """

    politeness: PipelinePoliteness = field(default_factory=PipelinePoliteness)
    confidence_threshold: float = 0.7
    breaking_confidence_floor: float = 0.5
    min_description_length: int = 20
    trivial_similarity: float = 0.98
    min_analysis_chars: int = 100
    max_prompt_chars: int = 8000
    max_source_chars: int = 10000
    fetch_timeout: float = 30.0
    parallelism: int = 4
    source_workers: int = 4
    capture_screenshots: bool = False
    apply_policy: str = "review"
    model: str = "gpt-4o-mini"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.apply_policy not in APPLY_POLICIES:
            raise ValueError(
                f"Invalid apply policy: {self.apply_policy}. Must be one of {APPLY_POLICIES}"
            )
        for name in ("confidence_threshold", "breaking_confidence_floor", "trivial_similarity"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.parallelism < 1 or self.source_workers < 1:
            raise ValueError("parallelism and source_workers must be at least 1")
        if self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")

    @property
    def auto_apply(self) -> bool:
        return self.apply_policy == "automatic"

    @classmethod
    def from_project_config(
        cls,
        project_config: "ProjectConfig",
        **overrides: Any,
    ) -> "PipelineConfig":
        """Build a config from the project JSON file plus explicit overrides."""
        known = {f.name for f in fields(cls)} - {"politeness"}
        section = dict(project_config.pipeline)
        politeness_values = section.pop("politeness", {}) or {}
        values: dict[str, Any] = {k: v for k, v in section.items() if k in known}
        values.setdefault("model", project_config.model)
        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        if politeness_values:
            config.politeness = replace(config.politeness, **politeness_values)
        return config

