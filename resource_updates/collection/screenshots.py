"""Browser screenshots of a resource's primary page."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from resource_updates import paths, utils
from resource_updates.errors import ScreenshotError

if TYPE_CHECKING:
    from .ratelimit import ServiceRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_NAVIGATION_TIMEOUT = 30000
DEFAULT_VIEWPORT = {"width": 1440, "height": 900}


def is_playwright_available() -> bool:
    """Check if Playwright is importable."""
    try:
        from playwright.sync_api import sync_playwright  # noqa: F401
        return True
    except ImportError:
        return False


class ScreenshotCapture:
    """Captures viewport screenshots with headless Chromium.

    Files are content-addressed, so recapturing an unchanged page yields the
    same reference and no new file.
    """

    def __init__(
        self,
        root: Path | None = None,
        *,
        rate_limiter: "ServiceRateLimiter | None" = None,
        timeout: int = DEFAULT_NAVIGATION_TIMEOUT,
        wait_until: str = "networkidle",
        viewport: dict[str, int] | None = None,
    ) -> None:
        self.root = root or paths.get_screenshots_root()
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.wait_until = wait_until
        self.viewport = viewport or dict(DEFAULT_VIEWPORT)

    def capture(self, url: str, slug: str) -> str:
        """Capture ``url`` and return the stored reference ``slug/<hash>.png``.

        Raises:
            ScreenshotError: If Playwright is missing or the capture fails.
        """
        if self.rate_limiter is not None:
            self.rate_limiter.wait("screenshot")
        image = self._render(url)
        return self.store(slug, image)

    def store(self, slug: str, image: bytes) -> str:
        if not image:
            raise ScreenshotError(f"Empty screenshot for {slug}")
        name = f"{utils.sha256_bytes(image)[:16]}.png"
        target = self.root / slug / name
        if not target.exists():
            utils.ensure_directory(target.parent)
            target.write_bytes(image)
        return f"{slug}/{name}"

    def _render(self, url: str) -> bytes:
        try:
            from playwright.sync_api import sync_playwright, Error as PlaywrightError
        except ImportError as exc:
            raise ScreenshotError(
                "Playwright is not installed. Install with: pip install playwright && playwright install chromium"
            ) from exc

        logger.info("Capturing screenshot of %s", url)
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=True)
                try:
                    context = browser.new_context(viewport=self.viewport, ignore_https_errors=True)
                    page = context.new_page()
                    page.set_default_timeout(self.timeout)
                    response = page.goto(url, wait_until=self.wait_until)
                    if response is None:
                        raise ScreenshotError(f"No response received for URL: {url}")
                    if response.status >= 400:
                        raise ScreenshotError(f"HTTP {response.status} error for URL: {url}")
                    return page.screenshot(type="png")
                finally:
                    browser.close()
        except PlaywrightError as exc:
            raise ScreenshotError(f"Screenshot failed for {url}: {exc}") from exc
