"""steadyhand test configuration — shared fixtures for unit and integration tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest


# ---------------------------------------------------------------------------
# Async backend
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend() -> str:
    """Run ``@pytest.mark.anyio`` tests on asyncio only."""
    return "asyncio"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from steadyhand.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def fast_settings():
    """Settings with every sleep and delay shrunk to zero."""
    from steadyhand.settings.config import (
        CaptchaSettings,
        ExtractionSettings,
        LocatorSettings,
        NavigationSettings,
        Settings,
    )

    return Settings(
        navigation=NavigationSettings(backoff_seconds=0, max_attempts=3),
        locator=LocatorSettings(strategy_timeout_ms=1_000),
        captcha=CaptchaSettings(
            refresh_wait_ms=0,
            type_delay_min_ms=0,
            type_delay_max_ms=0,
            managed_poll_interval_ms=1,
            managed_timeout_seconds=0.05,
        ),
        extraction=ExtractionSettings(capture_window_ms=0),
    )


# ---------------------------------------------------------------------------
# Playwright doubles
# ---------------------------------------------------------------------------


def _make_handle(attached: bool = True) -> MagicMock:
    """Return an ``ElementHandle`` double whose coroutine methods are ``AsyncMock``s."""
    handle = MagicMock(name="handle")
    handle.evaluate = AsyncMock(return_value=attached)
    handle.click = AsyncMock()
    handle.fill = AsyncMock()
    handle.press = AsyncMock()
    handle.screenshot = AsyncMock(return_value=b"\x89PNG")
    handle.scroll_into_view_if_needed = AsyncMock()
    handle.get_attribute = AsyncMock(return_value=None)
    handle.inner_text = AsyncMock(return_value="")
    handle.inner_html = AsyncMock(return_value="")
    return handle


def _make_frame(url: str = "https://example.com/", *, detached: bool = False) -> MagicMock:
    """Return a ``Frame`` double that matches nothing by default."""
    frame = MagicMock(name=f"frame<{url}>")
    frame.url = url
    frame.is_detached.return_value = detached
    frame.query_selector = AsyncMock(return_value=None)
    frame.query_selector_all = AsyncMock(return_value=[])
    frame.wait_for_selector = AsyncMock(return_value=None)
    frame.evaluate = AsyncMock(return_value=[])
    return frame


def _make_page(main: MagicMock | None = None, children: list[MagicMock] | None = None) -> MagicMock:
    """Return a ``Page`` double wired to *main* and *children* frames."""
    main = main or _make_frame()
    page = MagicMock(name="page")
    page.main_frame = main
    page.frames = [main, *(children or [])]
    page.url = main.url
    page.is_closed.return_value = False
    page.query_selector = AsyncMock(return_value=None)
    page.evaluate = AsyncMock(return_value={})
    page.goto = AsyncMock()
    page.reload = AsyncMock()
    page.title = AsyncMock(return_value="Example")
    page.content = AsyncMock(return_value="<html></html>")
    page.inner_text = AsyncMock(return_value="")
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.keyboard = MagicMock()
    page.keyboard.type = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.context = MagicMock(name="context")
    page.context.cookies = AsyncMock(return_value=[])
    page.context.add_cookies = AsyncMock()
    page.context.clear_cookies = AsyncMock()
    return page


@pytest.fixture()
def make_handle():
    """Factory for element handle doubles."""
    return _make_handle


@pytest.fixture()
def make_frame():
    """Factory for frame doubles."""
    return _make_frame


@pytest.fixture()
def make_page():
    """Factory for page doubles."""
    return _make_page


@pytest.fixture()
def page() -> MagicMock:
    return _make_page()


@pytest.fixture()
def session(page):
    """A ``BrowserSession`` attached to the mock page."""
    from steadyhand.browser.session import BrowserSession

    return BrowserSession.attach(page)


# ---------------------------------------------------------------------------
# Pytest markers
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that require external services or real I/O")
    config.addinivalue_line("markers", "slow: marks tests that take more than a few seconds")
