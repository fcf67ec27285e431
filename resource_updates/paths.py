"""Filesystem locations used by the resource update pipeline."""

from __future__ import annotations

import os
from pathlib import Path

_DATA_ENV = "RESOURCE_UPDATES_DATA"
_CONFIG_ENV = "RESOURCE_UPDATES_CONFIG"


def get_project_root() -> Path:
    """Directory the pipeline is run from."""
    return Path.cwd()


def get_data_root() -> Path:
    """Root directory for catalog, job and changelog documents."""
    override = os.environ.get(_DATA_ENV)
    if override:
        return Path(override)
    return get_project_root() / "data"


def get_resources_root() -> Path:
    return get_data_root() / "resources"


def get_jobs_root() -> Path:
    return get_data_root() / "jobs"


def get_changelog_root() -> Path:
    return get_data_root() / "changelog"


def get_content_root() -> Path:
    """Where collected page text is stored, one directory per job."""
    return get_data_root() / "content"


def get_screenshots_root() -> Path:
    return get_data_root() / "screenshots"


def get_config_file() -> Path:
    override = os.environ.get(_CONFIG_ENV)
    if override:
        return Path(override)
    return get_project_root() / "config" / "resource_updates.json"
