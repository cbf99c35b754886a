"""Browser session handle shared by every component.

The session is injected into the dispatcher and its collaborators; its
lifecycle belongs to the caller.  Either let steadyhand launch Chromium with
``start()`` / ``close()`` (or ``async with``), or wrap a page the host agent
already owns with :meth:`BrowserSession.attach`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Browser, BrowserContext, Frame, Page, Playwright, async_playwright

from steadyhand.exceptions import SessionNotStartedError
from steadyhand.settings.config import BrowserSettings

logger = logging.getLogger(__name__)


@dataclass
class LaunchProfile:
    """Playwright launch and context arguments for one session."""

    launch_args: dict[str, Any] = field(default_factory=dict)
    context_args: dict[str, Any] = field(default_factory=dict)


def build_launch_profile(settings: BrowserSettings, *, headless: bool | None = None) -> LaunchProfile:
    """Translate ``BrowserSettings`` into Playwright keyword arguments."""
    profile = LaunchProfile()
    profile.launch_args["headless"] = settings.headless if headless is None else headless
    if settings.slow_mo_ms:
        profile.launch_args["slow_mo"] = settings.slow_mo_ms

    ctx = profile.context_args
    ctx["viewport"] = {"width": settings.viewport_width, "height": settings.viewport_height}
    if settings.user_agent:
        ctx["user_agent"] = settings.user_agent
    return profile


class BrowserSession:
    """Explicit handle to the active browser, context and page."""

    def __init__(
        self,
        settings: BrowserSettings | None = None,
        *,
        page: Page | None = None,
        context: BrowserContext | None = None,
    ) -> None:
        self._settings = settings or BrowserSettings()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = context
        self._page: Page | None = page
        self._owned = False

    @classmethod
    def attach(cls, page: Page, context: BrowserContext | None = None) -> "BrowserSession":
        """Wrap a page whose browser is owned by someone else."""
        return cls(page=page, context=context or page.context)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, headless: bool | None = None) -> "BrowserSession":
        """Launch Chromium and open a fresh page.  No-op if already running."""
        if self._page is not None:
            return self
        profile = build_launch_profile(self._settings, headless=headless)
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(**profile.launch_args)
        self._context = await self._browser.new_context(**profile.context_args)
        self._context.set_default_timeout(self._settings.timeout_ms)
        self._page = await self._context.new_page()
        self._owned = True
        logger.info("Browser session started (headless=%s)", profile.launch_args["headless"])
        return self

    async def close(self) -> None:
        """Close what ``start()`` opened.  Attached sessions are only released."""
        if self._owned:
            try:
                if self._browser is not None:
                    await self._browser.close()
            finally:
                if self._playwright is not None:
                    await self._playwright.stop()
            logger.info("Browser session closed")
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        self._owned = False

    async def __aenter__(self) -> "BrowserSession":
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._page is not None and not self._page.is_closed()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise SessionNotStartedError()
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            if self._page is None:
                raise SessionNotStartedError()
            self._context = self._page.context
        return self._context

    def frames(self, limit: int | None = None) -> list[Frame]:
        """Return the main frame followed by live child frames, capped at *limit*."""
        page = self.page
        main = page.main_frame
        children = [f for f in page.frames if f is not main and not f.is_detached()]
        frames = [main, *children]
        return frames if limit is None else frames[: max(1, limit)]
