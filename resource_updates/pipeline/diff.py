"""Compare an analysis proposal and collected facts with a stored resource."""

from __future__ import annotations

import difflib
import logging
from typing import Any, Iterable, Mapping

from resource_updates import utils
from resource_updates.catalog.jobs import ProposedChange
from resource_updates.catalog.resources import Resource

from .analyzer import AnalysisProposal
from .config import PipelineConfig

logger = logging.getLogger(__name__)

# Proposal order follows this table
FIELD_LABELS: dict[str, str] = {
    "description": "Description",
    "overview": "Overview",
    "features": "Key Features",
    "tags": "Tags",
    "difficulty": "Difficulty",
    "screenshots": "Screenshots",
    "github_stars": "GitHub Stars",
    "github_forks": "GitHub Forks",
    "github_open_issues": "Open Issues",
    "github_last_pushed_at": "Last Push",
    "github_language": "Language",
    "github_license": "License",
}

FACT_FIELDS = (
    "github_stars",
    "github_forks",
    "github_open_issues",
    "github_last_pushed_at",
    "github_language",
    "github_license",
)

OBJECTIVE_FIELDS = FACT_FIELDS + ("screenshots",)


def label_for(field_name: str) -> str:
    return FIELD_LABELS.get(field_name, field_name.replace("_", " ").title())


def texts_differ(old: str | None, new: str | None, similarity: float) -> bool:
    """True when ``new`` is a meaningful change from ``old``.

    Whitespace and case are ignored; near-identical rewrites at or above
    ``similarity`` count as unchanged.
    """
    if not new:
        return False
    a = utils.normalize_whitespace(old or "").casefold()
    b = utils.normalize_whitespace(new).casefold()
    if a == b:
        return False
    if not a:
        return True
    return difflib.SequenceMatcher(None, a, b).ratio() < similarity


def _casefolded(values: Iterable[str]) -> set[str]:
    return {utils.normalize_whitespace(value).casefold() for value in values}


def diff_resource(
    resource: Resource,
    proposal: AnalysisProposal | None,
    facts: Mapping[str, Any],
    config: PipelineConfig,
    new_screenshots: list[str] | None = None,
) -> list[ProposedChange]:
    """Return the ordered changes that would bring ``resource`` up to date.

    Fields with no delta produce nothing. Repository facts and screenshots
    are objective (confidence 1.0, never breaking); content fields carry the
    analysis confidence.
    """
    changes: dict[str, ProposedChange] = {}

    if proposal is not None:
        changes.update(_content_changes(resource, proposal, config))

    if new_screenshots and set(new_screenshots) != set(resource.screenshots):
        changes["screenshots"] = ProposedChange(
            field="screenshots",
            label=label_for("screenshots"),
            old_value=list(resource.screenshots),
            new_value=list(new_screenshots),
            confidence=1.0,
            reason="New screenshots captured from the primary page",
        )

    for name in FACT_FIELDS:
        if name not in facts or facts[name] is None:
            continue
        old = resource.facts.get(name)
        new = facts[name]
        if old == new:
            continue
        changes[name] = ProposedChange(
            field=name,
            label=label_for(name),
            old_value=old,
            new_value=new,
            confidence=1.0,
            reason="Reported by the repository hosting API",
        )

    ordered = [changes[name] for name in FIELD_LABELS if name in changes]
    logger.debug("Diff for %s: %s", resource.slug, [change.field for change in ordered] or "no changes")
    return ordered


def _content_changes(
    resource: Resource,
    proposal: AnalysisProposal,
    config: PipelineConfig,
) -> dict[str, ProposedChange]:
    confidence = proposal.confidence
    low_confidence = confidence < config.breaking_confidence_floor
    reason = proposal.summary or "Suggested from the resource's current sources"
    changes: dict[str, ProposedChange] = {}

    def propose(name: str, old: Any, new: Any, *, breaking: bool = False) -> None:
        changes[name] = ProposedChange(
            field=name,
            label=label_for(name),
            old_value=old,
            new_value=new,
            confidence=confidence,
            reason=reason,
            is_breaking=breaking or low_confidence,
        )

    description = proposal.description
    if (
        description
        and confidence > config.confidence_threshold
        and len(description) >= config.min_description_length
        and texts_differ(resource.description, description, config.trivial_similarity)
    ):
        propose("description", resource.description, description)
    elif description and description != resource.description:
        logger.debug(
            "Discarding suggested description for %s (confidence %.2f)",
            resource.slug,
            confidence,
        )

    if texts_differ(resource.overview, proposal.overview, config.trivial_similarity):
        propose("overview", resource.overview, proposal.overview)

    if proposal.features and _casefolded(proposal.features) != _casefolded(resource.features):
        dropped = _casefolded(resource.features) - _casefolded(proposal.features)
        propose("features", list(resource.features), list(proposal.features), breaking=bool(dropped))

    stored_tags = _casefolded(resource.tags)
    added_tags = [tag for tag in proposal.tags if tag.casefold() not in stored_tags]
    if added_tags:
        propose("tags", list(resource.tags), list(resource.tags) + added_tags)

    if proposal.difficulty and proposal.difficulty != resource.difficulty:
        propose("difficulty", resource.difficulty, proposal.difficulty)

    return changes
