"""Resource update pipeline: re-crawl catalog entries and review proposed edits."""

from __future__ import annotations

__version__ = "0.1.0"
