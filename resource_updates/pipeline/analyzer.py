"""Text-generation analysis of collected resource content."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, TYPE_CHECKING

from resource_updates.catalog.resources import Resource
from resource_updates.errors import AnalysisError
from resource_updates.integrations.models import TextGenerationClient, TextGenerationError

if TYPE_CHECKING:
    from resource_updates.collection.ratelimit import ServiceRateLimiter

logger = logging.getLogger(__name__)

DIFFICULTIES = ("beginner", "intermediate", "advanced")

SYSTEM_PROMPT = """You are an expert resource curator for a directory of developer tools, \
libraries and documentation. You compare a catalog entry with content scraped from the \
resource's official sources and suggest accurate, neutral catalog copy.

Respond with ONLY one JSON object of this shape:
{
  "description": "One or two sentence display description",
  "longDescription": "A longer overview of what the resource is and does",
  "keyFeatures": ["Feature", "..."],
  "suggestedTags": ["tag", "..."],
  "difficulty": "beginner" | "intermediate" | "advanced",
  "confidence": 0.0-1.0,
  "summary": "What changed compared with the catalog entry, if anything"
}

Base every statement on the scraped content. Keep the current wording when it is still \
accurate. Lower the confidence when the sources are thin or contradict each other."""

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(slots=True)
class AnalysisProposal:
    """Structured suggestion parsed from one model reply."""

    description: str | None = None
    overview: str | None = None
    features: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    difficulty: str | None = None
    confidence: float = 0.0
    summary: str = ""
    model: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, model: str | None = None) -> "AnalysisProposal":
        """Build a proposal from the model's JSON object.

        Missing or mistyped members are dropped rather than failing the
        analysis; only a reply with no usable member at all is rejected.
        """
        proposal = cls(
            description=_clean_text(payload.get("description")),
            overview=_clean_text(payload.get("longDescription") or payload.get("overview")),
            features=_clean_list(payload.get("keyFeatures") or payload.get("features")),
            tags=[tag.lower() for tag in _clean_list(payload.get("suggestedTags") or payload.get("tags"))],
            difficulty=_clean_difficulty(payload.get("difficulty")),
            confidence=_clean_confidence(payload.get("confidence")),
            summary=_clean_text(payload.get("summary")) or "",
            model=model,
        )
        if not (proposal.description or proposal.overview or proposal.features or proposal.tags or proposal.difficulty):
            raise AnalysisError("Analysis response contained no usable fields")
        return proposal

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "overview": self.overview,
            "features": list(self.features),
            "tags": list(self.tags),
            "difficulty": self.difficulty,
            "confidence": self.confidence,
            "summary": self.summary,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AnalysisProposal":
        return cls(
            description=payload.get("description"),
            overview=payload.get("overview"),
            features=list(payload.get("features", [])),
            tags=list(payload.get("tags", [])),
            difficulty=payload.get("difficulty"),
            confidence=float(payload.get("confidence", 0.0)),
            summary=payload.get("summary", ""),
            model=payload.get("model"),
        )


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object in ``text``.

    Handles replies fenced in ```json blocks and objects wrapped in prose.

    Raises:
        AnalysisError: If no JSON object can be decoded.
    """
    candidates = [match.strip() for match in _FENCED_JSON.findall(text)]
    candidates.append(text)

    decoder = json.JSONDecoder()
    for candidate in candidates:
        start = candidate.find("{")
        while start != -1:
            try:
                value, _ = decoder.raw_decode(candidate, start)
            except json.JSONDecodeError:
                start = candidate.find("{", start + 1)
                continue
            if isinstance(value, dict):
                return value
            start = candidate.find("{", start + 1)
    raise AnalysisError("No JSON object found in analysis response")


def build_prompt(resource: Resource, content: str) -> str:
    current = {
        "description": resource.description,
        "overview": resource.overview,
        "features": resource.features,
        "tags": resource.tags,
        "difficulty": resource.difficulty,
    }
    return (
        f"## Catalog entry\n"
        f"Title: {resource.title}\n"
        f"Category: {resource.category or 'uncategorized'}\n"
        f"Current description: {resource.description or '(none)'}\n\n"
        f"Current values:\n```json\n{json.dumps(current, indent=2, ensure_ascii=False)}\n```\n\n"
        f"## Scraped content from official sources\n\n{content}"
    )


class ContentAnalyzer:
    """Turns aggregated source text into an ``AnalysisProposal``.

    One model call per analysis; transport-level 429 retries happen in the
    client, never here.
    """

    def __init__(
        self,
        client: TextGenerationClient,
        *,
        model: str | None = None,
        max_prompt_chars: int = 8000,
        rate_limiter: "ServiceRateLimiter | None" = None,
    ) -> None:
        self.client = client
        self.model = model
        self.max_prompt_chars = max_prompt_chars
        self.rate_limiter = rate_limiter

    def analyze(self, resource: Resource, content: str) -> AnalysisProposal:
        """Analyze ``content`` for ``resource``.

        Raises:
            AnalysisError: If the call fails or the reply is unparseable.
        """
        bounded = content[: self.max_prompt_chars]
        if self.rate_limiter is not None:
            self.rate_limiter.wait("model")
        try:
            completion = self.client.generate(SYSTEM_PROMPT, build_prompt(resource, bounded), model=self.model)
        except TextGenerationError as exc:
            raise AnalysisError(f"Text generation failed: {exc}") from exc

        payload = extract_json_object(completion.text)
        proposal = AnalysisProposal.from_payload(payload, model=completion.model)
        logger.info(
            "Analyzed %s with %s (confidence %.2f)",
            resource.slug,
            completion.model,
            proposal.confidence,
        )
        return proposal


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _clean_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    seen: set[str] = set()
    items = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            continue
        key = item.strip().casefold()
        if key in seen:
            continue
        seen.add(key)
        items.append(item.strip())
    return items


def _clean_difficulty(value: Any) -> str | None:
    if isinstance(value, str) and value.strip().lower() in DIFFICULTIES:
        return value.strip().lower()
    return None


def _clean_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return min(1.0, max(0.0, float(value)))
