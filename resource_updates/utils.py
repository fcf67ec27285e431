"""Small filesystem and hashing helpers shared across the package."""

from __future__ import annotations

import hashlib
from pathlib import Path
from urllib.parse import urlparse


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def sha256_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def is_http_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` through a temporary sibling file."""
    ensure_directory(path.parent)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    tmp_path.replace(path)


def normalize_whitespace(value: str) -> str:
    return " ".join(value.split())


def truncate(value: str, limit: int, marker: str = "") -> str:
    """Bound ``value`` to ``limit`` characters, appending ``marker`` when cut."""
    if limit <= 0 or len(value) <= limit:
        return value
    return value[:limit] + marker
