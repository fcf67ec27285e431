"""Project configuration management."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Optional

from resource_updates import paths

logger = logging.getLogger(__name__)


class ProjectConfig:
    """Access to project configuration values."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        config_path = paths.get_config_file()
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    self._data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Ignoring unreadable config %s: %s", config_path, exc)
                self._data = {}

        self._loaded = True

    @property
    def model(self) -> str:
        """Get the configured text-generation model, defaulting to gpt-4o-mini."""
        self._ensure_loaded()
        return self._data.get("model", "gpt-4o-mini")

    @property
    def scraper_api_url(self) -> Optional[str]:
        """Base URL of the high-fidelity scraping backend, if any."""
        self._ensure_loaded()
        return self._data.get("scraper_api_url")

    @property
    def pipeline(self) -> dict[str, Any]:
        """Overrides for :class:`PipelineConfig` fields."""
        self._ensure_loaded()
        section = self._data.get("pipeline", {})
        return section if isinstance(section, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw configuration value."""
        self._ensure_loaded()
        return self._data.get(key, default)


@lru_cache(maxsize=1)
def get_config() -> ProjectConfig:
    """Get the singleton configuration instance."""
    return ProjectConfig()
