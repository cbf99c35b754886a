"""Unit tests for steadyhand.browser.handlers — per-action behavior through the dispatcher."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from steadyhand.browser.handlers import _mask_value
from steadyhand.dispatcher import Dispatcher
from steadyhand.models.results import ErrorKind


def _dom(frame, present: dict):
    async def query(selector):
        return present.get(selector)

    frame.query_selector.side_effect = query


@pytest.fixture()
def dispatcher(session, fast_settings) -> Dispatcher:
    return Dispatcher(session, settings=fast_settings)


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


class TestNavigate:
    @pytest.mark.anyio
    async def test_navigate(self, page, dispatcher) -> None:
        page.goto.return_value = MagicMock(status=200)

        result = await dispatcher.execute("navigate", {"url": "example.com"})

        assert result.success is True
        assert result.payload == {"url": "https://example.com/", "status": 200, "title": "Example"}
        page.goto.assert_awaited_once_with("https://example.com", wait_until="networkidle", timeout=30_000)

    @pytest.mark.anyio
    async def test_navigate_overrides(self, page, dispatcher) -> None:
        page.goto.return_value = None

        result = await dispatcher.execute("navigate", {"url": "https://a.test", "wait_until": "load", "timeout_ms": 10})

        assert result.payload["status"] is None
        page.goto.assert_awaited_once_with("https://a.test", wait_until="load", timeout=10)

    @pytest.mark.anyio
    async def test_transient_exhaustion(self, page, dispatcher) -> None:
        page.goto.side_effect = PlaywrightError("Execution context was destroyed")

        result = await dispatcher.execute("navigate", {"url": "https://a.test"})

        assert result.error_kind is ErrorKind.TRANSIENT
        assert result.payload == {"attempts": 3}
        assert page.goto.await_count == 3

    @pytest.mark.anyio
    async def test_dns_failure(self, page, dispatcher) -> None:
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

        result = await dispatcher.execute("navigate", {"url": "https://nope.invalid"})

        assert result.error_kind is ErrorKind.FAILED
        assert result.payload == {"url": "https://nope.invalid"}

    @pytest.mark.anyio
    async def test_reload(self, page, dispatcher) -> None:
        page.reload.return_value = MagicMock(status=304)

        result = await dispatcher.execute("reload")

        assert result.payload == {"url": "https://example.com/", "status": 304}


# ---------------------------------------------------------------------------
# Element interaction
# ---------------------------------------------------------------------------


class TestInteraction:
    @pytest.mark.anyio
    async def test_click_options(self, page, dispatcher, make_handle) -> None:
        handle = make_handle()
        _dom(page.main_frame, {"#buy": handle})

        result = await dispatcher.execute("click", {"locator": "#buy", "click_count": 2, "button": "right"})

        assert result.payload == {"clicked": "#buy"}
        handle.click.assert_awaited_once_with(button="right", click_count=2, delay=0, timeout=5_000)

    @pytest.mark.anyio
    async def test_click_waits_for_late_element_instead_of_healing(self, page, dispatcher, make_handle) -> None:
        late, container = make_handle(), make_handle()
        _dom(page.main_frame, {"iframe": container})

        async def attach_later(selector, **kwargs):
            await asyncio.sleep(0.05)
            return late if selector == "#late" else None

        page.main_frame.wait_for_selector.side_effect = attach_later

        result = await dispatcher.execute("click", {"locator": "#late"})

        assert result.success is True
        assert result.healing is None
        assert dispatcher.heal_attempts == 0
        late.click.assert_awaited_once()
        container.click.assert_not_awaited()
        page.main_frame.wait_for_selector.assert_awaited_once_with("#late", state="attached", timeout=1_000)

    @pytest.mark.anyio
    async def test_type_clears_then_types(self, page, dispatcher, make_handle) -> None:
        handle = make_handle()
        _dom(page.main_frame, {"#email": handle})

        result = await dispatcher.execute("type", {"locator": "#email", "text": "me@example.com", "delay_ms": 5})

        assert result.payload == {"typed": 14, "into": "#email"}
        handle.fill.assert_awaited_once_with("")
        page.keyboard.type.assert_awaited_once_with("me@example.com", delay=5)

    @pytest.mark.anyio
    async def test_type_without_clear(self, page, dispatcher, make_handle) -> None:
        handle = make_handle()
        _dom(page.main_frame, {"#q": handle})

        await dispatcher.execute("type", {"locator": "#q", "text": "x", "clear": False})

        handle.fill.assert_not_awaited()

    @pytest.mark.anyio
    async def test_find_element_describes(self, page, dispatcher, make_handle) -> None:
        handle = make_handle()
        handle.evaluate = AsyncMock(return_value={"tag": "button", "id": "go", "text": "Go", "visible": True})
        _dom(page.main_frame, {"#go": handle})

        result = await dispatcher.execute("find_element", {"locator": "#go"})

        assert result.payload["strategy"] == "exact"
        assert result.payload["count"] == 1
        assert result.payload["elements"][0]["tag"] == "button"

    @pytest.mark.anyio
    async def test_press_key_on_page(self, page, dispatcher) -> None:
        result = await dispatcher.execute("press_key", {"key": "Escape"})
        assert result.payload == {"key": "Escape"}
        page.keyboard.press.assert_awaited_once_with("Escape")


# ---------------------------------------------------------------------------
# Waiting and content
# ---------------------------------------------------------------------------


class TestWaitAndContent:
    @pytest.mark.anyio
    async def test_plain_wait(self, page, dispatcher) -> None:
        result = await dispatcher.execute("wait", {"timeout_ms": 250})
        assert result.payload == {"waited_ms": 250}
        page.wait_for_timeout.assert_awaited_once_with(250)

    @pytest.mark.anyio
    async def test_wait_for_visible(self, page, dispatcher) -> None:
        result = await dispatcher.execute("wait", {"locator": ".spinner", "state": "hidden"})
        assert result.success is True
        page.wait_for_selector.assert_awaited_once_with(".spinner", state="hidden", timeout=5_000)

    @pytest.mark.anyio
    async def test_wait_timeout_for_visible_is_not_found(self, page, dispatcher) -> None:
        page.wait_for_selector.side_effect = PlaywrightTimeout("Timeout 5000ms exceeded")

        result = await dispatcher.execute("wait", {"locator": "#late"})

        assert result.error_kind is ErrorKind.NOT_FOUND

    @pytest.mark.anyio
    async def test_wait_timeout_for_hidden_is_failure(self, page, dispatcher) -> None:
        page.wait_for_selector.side_effect = PlaywrightTimeout("Timeout 5000ms exceeded")

        result = await dispatcher.execute("wait", {"locator": "#modal", "state": "hidden"})

        assert result.error_kind is ErrorKind.FAILED
        assert dispatcher.heal_attempts == 0

    @pytest.mark.anyio
    async def test_page_text_truncated(self, page, dispatcher) -> None:
        page.inner_text.return_value = "x" * 50

        result = await dispatcher.execute("get_content", {"max_chars": 10})

        assert result.payload["content"] == "x" * 10
        assert result.payload["truncated"] is True
        page.inner_text.assert_awaited_once_with("body")

    @pytest.mark.anyio
    async def test_element_html(self, page, dispatcher, make_handle) -> None:
        handle = make_handle()
        handle.inner_html.return_value = "<b>hi</b>"
        _dom(page.main_frame, {"#box": handle})

        result = await dispatcher.execute("get_content", {"locator": "#box", "format": "html"})

        assert result.payload["content"] == "<b>hi</b>"
        assert result.payload["truncated"] is False


# ---------------------------------------------------------------------------
# Cookies
# ---------------------------------------------------------------------------


class TestCookies:
    @pytest.mark.anyio
    async def test_get(self, page, dispatcher) -> None:
        page.context.cookies.return_value = [{"name": "sid", "value": "1"}]

        result = await dispatcher.execute("cookies", {"urls": ["https://example.com"]})

        assert result.payload["count"] == 1
        page.context.cookies.assert_awaited_once_with(["https://example.com"])

    @pytest.mark.anyio
    async def test_set(self, page, dispatcher) -> None:
        cookie = {"name": "a", "value": "b", "url": "https://example.com"}
        result = await dispatcher.execute("cookies", {"op": "set", "cookies": [cookie]})
        assert result.payload == {"set": 1}
        page.context.add_cookies.assert_awaited_once_with([cookie])

    @pytest.mark.anyio
    async def test_set_nothing(self, dispatcher) -> None:
        result = await dispatcher.execute("cookies", {"op": "set"})
        assert result.error_kind is ErrorKind.INVALID_PARAMS

    @pytest.mark.anyio
    async def test_delete_and_clear(self, page, dispatcher) -> None:
        await dispatcher.execute("cookies", {"op": "delete", "name": "sid"})
        await dispatcher.execute("cookies", {"op": "clear"})
        assert page.context.clear_cookies.await_args_list[0].kwargs == {"name": "sid"}
        assert page.context.clear_cookies.await_args_list[1].kwargs == {}


# ---------------------------------------------------------------------------
# CAPTCHA and extraction routing
# ---------------------------------------------------------------------------


class TestCaptchaAndStreams:
    @pytest.mark.anyio
    async def test_managed_mode_without_widget(self, dispatcher) -> None:
        result = await dispatcher.execute("solve_captcha", {"mode": "managed"})
        assert result.success is False
        assert result.error == "No managed CAPTCHA widget detected"

    @pytest.mark.anyio
    async def test_auto_mode_prefers_widget(self, page, dispatcher, make_handle) -> None:
        async def query(selector):
            return make_handle() if "h-captcha" in selector else None

        page.query_selector.side_effect = query
        page.evaluate.return_value = "P1_token"

        result = await dispatcher.execute("solve_captcha", {})

        assert result.success is True
        assert result.payload["provider"] == "hcaptcha"
        assert result.payload["token"] == "P1_token"

    @pytest.mark.anyio
    async def test_ocr_mode_without_image(self, page, dispatcher) -> None:
        page.evaluate.return_value = {"image": None, "input": None, "refresh": None}

        result = await dispatcher.execute("solve_captcha", {"mode": "ocr"})

        assert result.error_kind is ErrorKind.FAILED
        assert result.error == "No CAPTCHA image found"
        assert dispatcher.heal_attempts == 0

    @pytest.mark.anyio
    async def test_extract_streams(self, page, dispatcher) -> None:
        page.main_frame.evaluate.return_value = None

        result = await dispatcher.execute("extract_streams", {"scan_frames": False, "capture_network": False})

        assert result.success is True
        assert result.payload["records"] == []
        assert result.payload["frames_scanned"] == 1
        assert result.payload["summary"] == {}


class TestMaskValue:
    def test_password_masked(self) -> None:
        assert _mask_value("hunter22", "password") == "hun***"

    def test_long_value_masked(self) -> None:
        assert _mask_value("a" * 40, "text") == "aaa***"

    def test_plain_value(self) -> None:
        assert _mask_value("hello", "text") == "hello"
