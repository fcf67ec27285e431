"""Catalog storage for curated resources and their changelog.

Resources and changelog entries are JSON documents on disk. The only write
path that touches an existing resource is :meth:`ResourceRepository.apply_changes`,
which pairs the field writes with the changelog append so that both land or
neither does.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, List, Mapping

from resource_updates import paths, utils
from resource_updates.errors import RepositoryError, ResourceNotFoundError

logger = logging.getLogger(__name__)

# Fields covered by Resource.content_hash.
HASHED_FIELDS = ("description", "overview")

# Editable attributes stored directly on the resource; every other field
# name is a structured fact.
CONTENT_FIELDS = ("description", "overview", "features", "tags", "difficulty", "screenshots")

UPDATE_FREQUENCIES = ("daily", "weekly", "monthly", "manual")

CHECK_INTERVALS: dict[str, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}

CHANGE_SOURCES = ("automatic", "reviewed")


def compute_content_hash(description: str, overview: str) -> str:
    """Hash of the committed description and overview text."""
    return utils.sha256_text(f"{description}\x00{overview}")


def get_check_interval(update_frequency: str | None) -> timedelta | None:
    """Refresh interval for a frequency; ``None`` means never automatic."""
    if update_frequency == "manual":
        return None
    return CHECK_INTERVALS.get(update_frequency or "weekly", CHECK_INTERVALS["weekly"])


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Resource:
    """A curated third-party tool, library or integration."""

    slug: str
    title: str
    url: str
    category: str = ""
    description: str = ""
    overview: str = ""
    repository_url: str | None = None
    documentation_url: str | None = None
    tags: List[str] = field(default_factory=list)
    features: List[str] = field(default_factory=list)
    difficulty: str | None = None
    facts: dict[str, Any] = field(default_factory=dict)
    screenshots: List[str] = field(default_factory=list)
    last_verified_at: datetime | None = None
    content_hash: str = ""

    # Refresh scheduling
    update_frequency: str = "weekly"
    auto_update_enabled: bool = True
    last_auto_updated_at: datetime | None = None
    last_update_job_id: str | None = None
    changelog_count: int = 0

    def __post_init__(self) -> None:
        if self.update_frequency not in UPDATE_FREQUENCIES:
            raise ValueError(
                f"Invalid update frequency: {self.update_frequency}. "
                f"Must be one of {UPDATE_FREQUENCIES}"
            )
        if not self.content_hash:
            self.refresh_content_hash()

    def refresh_content_hash(self) -> bool:
        """Recompute ``content_hash``; returns True when it changed."""
        new_hash = compute_content_hash(self.description, self.overview)
        changed = new_hash != self.content_hash
        self.content_hash = new_hash
        return changed

    def get_field(self, name: str) -> Any:
        if name in CONTENT_FIELDS:
            return getattr(self, name)
        return self.facts.get(name)

    def set_field(self, name: str, value: Any) -> None:
        if name in CONTENT_FIELDS:
            setattr(self, name, value)
        else:
            self.facts[name] = value

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "title": self.title,
            "url": self.url,
            "category": self.category,
            "description": self.description,
            "overview": self.overview,
            "repository_url": self.repository_url,
            "documentation_url": self.documentation_url,
            "tags": self.tags,
            "features": self.features,
            "difficulty": self.difficulty,
            "facts": self.facts,
            "screenshots": self.screenshots,
            "last_verified_at": _format_datetime(self.last_verified_at),
            "content_hash": self.content_hash,
            "update_frequency": self.update_frequency,
            "auto_update_enabled": self.auto_update_enabled,
            "last_auto_updated_at": _format_datetime(self.last_auto_updated_at),
            "last_update_job_id": self.last_update_job_id,
            "changelog_count": self.changelog_count,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Resource":
        return cls(
            slug=payload["slug"],
            title=payload.get("title", payload["slug"]),
            url=payload["url"],
            category=payload.get("category", ""),
            description=payload.get("description", "") or "",
            overview=payload.get("overview", "") or "",
            repository_url=payload.get("repository_url"),
            documentation_url=payload.get("documentation_url"),
            tags=list(payload.get("tags", [])),
            features=list(payload.get("features", [])),
            difficulty=payload.get("difficulty"),
            facts=dict(payload.get("facts", {})),
            screenshots=list(payload.get("screenshots", [])),
            last_verified_at=_parse_datetime(payload.get("last_verified_at")),
            content_hash=payload.get("content_hash", ""),
            update_frequency=payload.get("update_frequency", "weekly"),
            auto_update_enabled=payload.get("auto_update_enabled", True),
            last_auto_updated_at=_parse_datetime(payload.get("last_auto_updated_at")),
            last_update_job_id=payload.get("last_update_job_id"),
            changelog_count=payload.get("changelog_count", 0),
        )


@dataclass(frozen=True)
class FieldChange:
    """One committed (field, old, new) tuple."""

    field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "old_value": self.old_value, "new_value": self.new_value}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FieldChange":
        return cls(
            field=payload["field"],
            old_value=payload.get("old_value"),
            new_value=payload.get("new_value"),
        )


@dataclass(frozen=True)
class ChangelogEntry:
    """Immutable record of changes committed to a resource.

    ``version`` is assigned by the repository when the entry is appended.
    """

    resource_slug: str
    changes: tuple[FieldChange, ...]
    summary: str
    source: str  # "automatic" | "reviewed"
    applied_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    job_id: str | None = None
    applied_by: str | None = None
    source_urls: tuple[str, ...] = ()
    stats_snapshot: Mapping[str, Any] = field(default_factory=dict)
    version: int = 0

    def __post_init__(self) -> None:
        if self.source not in CHANGE_SOURCES:
            raise ValueError(f"Invalid changelog source: {self.source}")

    @property
    def fields(self) -> list[str]:
        return [change.field for change in self.changes]

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_slug": self.resource_slug,
            "version": self.version,
            "job_id": self.job_id,
            "changes": [change.to_dict() for change in self.changes],
            "summary": self.summary,
            "source": self.source,
            "applied_by": self.applied_by,
            "applied_at": self.applied_at.isoformat(),
            "source_urls": list(self.source_urls),
            "stats_snapshot": dict(self.stats_snapshot),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChangelogEntry":
        return cls(
            resource_slug=payload["resource_slug"],
            changes=tuple(FieldChange.from_dict(c) for c in payload.get("changes", [])),
            summary=payload.get("summary", ""),
            source=payload["source"],
            applied_at=datetime.fromisoformat(payload["applied_at"]),
            job_id=payload.get("job_id"),
            applied_by=payload.get("applied_by"),
            source_urls=tuple(payload.get("source_urls", [])),
            stats_snapshot=payload.get("stats_snapshot", {}),
            version=payload.get("version", 0),
        )


class ResourceRepository:
    """JSON-backed catalog with a transactional apply path.

    One process owns the data directory; a re-entrant lock serializes
    writes so changelog versions stay monotonic per resource.
    """

    def __init__(
        self,
        root: Path | None = None,
        changelog_root: Path | None = None,
    ) -> None:
        self.root = root or paths.get_resources_root()
        self.changelog_root = changelog_root or paths.get_changelog_root()
        utils.ensure_directory(self.root)
        utils.ensure_directory(self.changelog_root)
        self._lock = threading.RLock()

    def _resource_path(self, slug: str) -> Path:
        return self.root / f"{slug}.json"

    def _changelog_dir(self, slug: str) -> Path:
        return self.changelog_root / slug

    def get(self, slug: str) -> Resource | None:
        """Read a resource by slug."""
        path = self._resource_path(slug)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise RepositoryError(f"Corrupt resource document {path}: {exc}") from exc
        return Resource.from_dict(data)

    def require(self, slug: str) -> Resource:
        resource = self.get(slug)
        if resource is None:
            raise ResourceNotFoundError(f"Resource '{slug}' not found")
        return resource

    def save(self, resource: Resource) -> None:
        """Store a resource as-is (catalog import or seeding)."""
        with self._lock:
            utils.atomic_write_text(
                self._resource_path(resource.slug),
                json.dumps(resource.to_dict(), indent=2),
            )

    def list_resources(self) -> Iterator[Resource]:
        for path in sorted(self.root.glob("*.json")):
            resource = self.get(path.stem)
            if resource is not None:
                yield resource

    def list_changelog(self, slug: str) -> list[ChangelogEntry]:
        """Changelog entries for a resource, oldest first."""
        directory = self._changelog_dir(slug)
        if not directory.exists():
            return []
        entries = [
            ChangelogEntry.from_dict(json.loads(path.read_text(encoding="utf-8")))
            for path in directory.glob("*.json")
        ]
        return sorted(entries, key=lambda entry: entry.version)

    def apply_changes(
        self,
        slug: str,
        values: Mapping[str, Any],
        entry: ChangelogEntry | None = None,
        *,
        job_id: str | None = None,
        applied_at: datetime | None = None,
    ) -> tuple[Resource, ChangelogEntry | None]:
        """Write selected fields and append the changelog entry together.

        If the changelog append fails the resource document is restored and
        :class:`RepositoryError` is raised.

        Returns:
            The updated resource and the stored entry (with its version).
        """
        applied_at = applied_at or datetime.now(timezone.utc)
        with self._lock:
            resource = self.require(slug)
            resource_path = self._resource_path(slug)
            original = resource_path.read_text(encoding="utf-8")

            for name, value in values.items():
                resource.set_field(name, value)
            if any(name in HASHED_FIELDS for name in values):
                resource.refresh_content_hash()
            resource.last_verified_at = applied_at
            if job_id is not None:
                resource.last_update_job_id = job_id
                resource.last_auto_updated_at = applied_at

            stored_entry = None
            if entry is not None:
                stored_entry = replace(entry, version=self._next_version(slug))
                resource.changelog_count += 1

            try:
                utils.atomic_write_text(resource_path, json.dumps(resource.to_dict(), indent=2))
            except OSError as exc:
                raise RepositoryError(f"Failed to write resource {slug}: {exc}") from exc

            if stored_entry is not None:
                try:
                    self._write_changelog(stored_entry)
                except OSError as exc:
                    utils.atomic_write_text(resource_path, original)
                    raise RepositoryError(
                        f"Changelog append failed for {slug}, resource restored: {exc}"
                    ) from exc

        logger.info(
            "Applied %d field(s) to %s%s",
            len(values),
            slug,
            f" (changelog v{stored_entry.version})" if stored_entry else "",
        )
        return resource, stored_entry

    def _next_version(self, slug: str) -> int:
        existing = self.list_changelog(slug)
        return (existing[-1].version + 1) if existing else 1

    def _write_changelog(self, entry: ChangelogEntry) -> None:
        path = self._changelog_dir(entry.resource_slug) / f"{entry.version:05d}.json"
        if path.exists():
            raise OSError(f"Changelog entry {path} already exists")
        utils.atomic_write_text(path, json.dumps(entry.to_dict(), indent=2, default=str))

    def resources_due_for_update(
        self,
        limit: int = 10,
        now: datetime | None = None,
    ) -> list[Resource]:
        """Auto-update resources whose refresh interval has elapsed.

        Resources never refreshed come first, then the longest-waiting.
        """
        now = now or datetime.now(timezone.utc)
        due: list[Resource] = []
        for resource in self.list_resources():
            if not resource.auto_update_enabled:
                continue
            interval = get_check_interval(resource.update_frequency)
            if interval is None:
                continue
            last = resource.last_auto_updated_at
            if last is None or now - last >= interval:
                due.append(resource)

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        due.sort(key=lambda r: r.last_auto_updated_at or epoch)
        return due[:limit]
