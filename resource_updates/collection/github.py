"""Read-only GitHub REST helpers for repository facts and READMEs."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, TYPE_CHECKING
from urllib.parse import urlparse

import requests

from resource_updates.errors import CollectorError

if TYPE_CHECKING:
    from .ratelimit import ServiceRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"

# First path segments on github.com that are never an owner
_RESERVED_OWNERS = frozenset({
    "about", "apps", "collections", "enterprise", "explore", "features",
    "marketplace", "orgs", "pricing", "settings", "sponsors", "topics", "users",
})


def parse_github_url(url: str | None) -> tuple[str, str] | None:
    """Return ``(owner, repo)`` for a github.com repository URL, else None."""

    if not url:
        return None
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    if host not in ("github.com", "www.github.com"):
        return None
    segments = [segment for segment in parsed.path.split("/") if segment]
    if len(segments) < 2:
        return None
    owner, repo = segments[0], segments[1]
    if owner.lower() in _RESERVED_OWNERS:
        return None
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        return None
    return owner, repo


@dataclass(frozen=True)
class RepositoryMetadata:
    """Objective facts about a hosted repository."""

    owner: str
    repo: str
    stars: int
    forks: int
    open_issues: int
    pushed_at: str | None = None
    language: str | None = None
    license: str | None = None
    description: str | None = None
    homepage: str | None = None
    topics: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_api_payload(cls, owner: str, repo: str, payload: Mapping[str, Any]) -> "RepositoryMetadata":
        license_info = payload.get("license") or {}
        pushed_at = payload.get("pushed_at")
        try:
            return cls(
                owner=owner,
                repo=repo,
                stars=int(payload.get("stargazers_count") or 0),
                forks=int(payload.get("forks_count") or 0),
                open_issues=int(payload.get("open_issues_count") or 0),
                # Date only; the time of the last push is noise for a listing
                pushed_at=pushed_at[:10] if isinstance(pushed_at, str) else None,
                language=payload.get("language"),
                license=license_info.get("spdx_id") if isinstance(license_info, Mapping) else None,
                description=payload.get("description"),
                homepage=payload.get("homepage") or None,
                topics=tuple(payload.get("topics") or ()),
            )
        except (TypeError, ValueError) as exc:
            raise CollectorError(f"Unexpected repository payload for {owner}/{repo}") from exc

    def to_facts(self) -> dict[str, Any]:
        """Facts keyed by the resource fields they update."""
        facts: dict[str, Any] = {
            "github_stars": self.stars,
            "github_forks": self.forks,
            "github_open_issues": self.open_issues,
        }
        if self.pushed_at:
            facts["github_last_pushed_at"] = self.pushed_at
        if self.language:
            facts["github_language"] = self.language
        # "NOASSERTION" means GitHub could not identify the license
        if self.license and self.license != "NOASSERTION":
            facts["github_license"] = self.license
        return facts

    def describe(self) -> str:
        """Short text summary handed to the analyzer with the other sources."""
        lines = [f"Repository: {self.owner}/{self.repo}"]
        if self.description:
            lines.append(f"Description: {self.description}")
        if self.topics:
            lines.append(f"Topics: {', '.join(self.topics)}")
        if self.language:
            lines.append(f"Primary language: {self.language}")
        if self.homepage:
            lines.append(f"Homepage: {self.homepage}")
        lines.append(f"Stars: {self.stars}, forks: {self.forks}")
        return "\n".join(lines)


class RepositoryClient:
    """Fetches repository metadata and README text from the GitHub REST API.

    A token is optional. Without one the unauthenticated quota applies.
    """

    def __init__(
        self,
        *,
        token: str | None = None,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        rate_limiter: "ServiceRateLimiter | None" = None,
        session: requests.Session | None = None,
    ) -> None:
        self.token = token or os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self._session = session or requests.Session()

    def _headers(self, accept: str = "application/vnd.github+json") -> dict[str, str]:
        headers = {
            "Accept": accept,
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "resource-updates",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, path: str, accept: str = "application/vnd.github+json") -> requests.Response:
        if self.rate_limiter is not None:
            self.rate_limiter.wait("repository")
        url = f"{self.api_url}{path}"
        try:
            response = self._session.get(url, headers=self._headers(accept), timeout=self.timeout)
        except requests.RequestException as exc:
            raise CollectorError(f"GitHub request failed for {path}: {exc}") from exc
        if response.status_code >= 400:
            raise CollectorError(f"GitHub API error {response.status_code} for {path}")
        return response

    def fetch_metadata(self, owner: str, repo: str) -> RepositoryMetadata:
        response = self._get(f"/repos/{owner}/{repo}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise CollectorError(f"Invalid JSON from GitHub for {owner}/{repo}") from exc
        logger.debug("Fetched repository metadata for %s/%s", owner, repo)
        return RepositoryMetadata.from_api_payload(owner, repo, payload)

    def fetch_readme(self, owner: str, repo: str) -> str:
        response = self._get(f"/repos/{owner}/{repo}/readme", accept="application/vnd.github.raw+json")
        text = response.text.strip()
        if not text:
            raise CollectorError(f"README for {owner}/{repo} is empty")
        return text
