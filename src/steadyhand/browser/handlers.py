"""Action handlers and the action registry.

Each handler takes the shared ``HandlerContext`` and its typed params and
returns an ``ActionResult``.  Interaction handlers resolve their locator
exactly as given and raise ``ElementNotFoundError`` when it matches nothing;
the dispatcher turns that into a healable "not found" result.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from playwright.async_api import TimeoutError as PlaywrightTimeout

from steadyhand.browser.captcha import detect_managed_widget
from steadyhand.browser.navigation import resilient_goto, resilient_reload, with_transient_retry
from steadyhand.exceptions import ElementNotFoundError
from steadyhand.models.action import (
    ActionParams,
    ClickParams,
    CookiesParams,
    EvaluateParams,
    ExtractStreamsParams,
    FindElementParams,
    GetContentParams,
    NavigateParams,
    PressKeyParams,
    ReloadParams,
    SolveCaptchaParams,
    TypeParams,
    WaitParams,
)
from steadyhand.models.results import ActionResult, ErrorKind

if TYPE_CHECKING:
    from steadyhand.browser.captcha import CaptchaSolver
    from steadyhand.browser.extraction import ExtractionEngine
    from steadyhand.browser.locator import LocatorResolver, ResolvedElement
    from steadyhand.browser.session import BrowserSession
    from steadyhand.models.locator import Locator
    from steadyhand.settings.config import Settings

logger = logging.getLogger(__name__)

# Realistic human-like typing delay range (ms per character)
_TYPE_DELAY_MIN = 30
_TYPE_DELAY_MAX = 90

_ELEMENT_TIMEOUT_MS = 5_000

_DESCRIBE_JS = """
el => ({
    tag: el.tagName.toLowerCase(),
    id: el.id || '',
    text: (el.innerText || el.value || '').trim().substring(0, 80),
    visible: !!(el.offsetWidth || el.offsetHeight || el.getClientRects().length),
})
"""


@dataclass
class HandlerContext:
    """Collaborators shared by every handler for one session."""

    session: BrowserSession
    resolver: LocatorResolver
    captcha: CaptchaSolver
    extraction: ExtractionEngine
    settings: Settings


Handler = Callable[[HandlerContext, Any], Awaitable[ActionResult]]


@dataclass(frozen=True)
class ActionSpec:
    """Registry entry binding an action name to its params model and handler."""

    name: str
    params_model: type[ActionParams]
    handler: Handler
    description: str


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


async def _do_navigate(ctx: HandlerContext, params: NavigateParams) -> ActionResult:
    """Navigate to a URL with wait-strategy fallback and transient retry."""
    page = ctx.session.page
    nav = ctx.settings.navigation
    response = await with_transient_retry(
        lambda: resilient_goto(
            page,
            params.url,
            timeout_ms=params.timeout_ms or nav.timeout_ms,
            wait_until=params.wait_until or nav.wait_until,
        ),
        description=f"navigate {params.url}",
        max_attempts=nav.max_attempts,
        backoff_seconds=nav.backoff_seconds,
    )
    return ActionResult.ok(
        url=page.url,
        status=response.status if response is not None else None,
        title=await page.title(),
    )


async def _do_reload(ctx: HandlerContext, params: ReloadParams) -> ActionResult:
    """Reload the current page."""
    page = ctx.session.page
    nav = ctx.settings.navigation
    response = await with_transient_retry(
        lambda: resilient_reload(
            page,
            timeout_ms=params.timeout_ms or nav.timeout_ms,
            wait_until=params.wait_until or nav.wait_until,
        ),
        description="reload",
        max_attempts=nav.max_attempts,
        backoff_seconds=nav.backoff_seconds,
    )
    return ActionResult.ok(url=page.url, status=response.status if response is not None else None)


# ---------------------------------------------------------------------------
# Element interaction
# ---------------------------------------------------------------------------


async def _require(ctx: HandlerContext, locator: Locator) -> ResolvedElement:
    element = await ctx.resolver.resolve_exact(locator)
    if element is None:
        raise ElementNotFoundError(locator.describe())
    return element


async def _do_click(ctx: HandlerContext, params: ClickParams) -> ActionResult:
    """Click an element."""
    element = await _require(ctx, params.locator)
    await element.handle.scroll_into_view_if_needed(timeout=_ELEMENT_TIMEOUT_MS)
    await element.handle.click(
        button=params.button,
        click_count=params.click_count,
        delay=params.delay_ms,
        timeout=_ELEMENT_TIMEOUT_MS,
    )
    return ActionResult.ok(clicked=params.locator.describe())


async def _do_type(ctx: HandlerContext, params: TypeParams) -> ActionResult:
    """Type text into an input with human-like per-character delays."""
    element = await _require(ctx, params.locator)
    handle = element.handle
    await handle.scroll_into_view_if_needed(timeout=_ELEMENT_TIMEOUT_MS)
    await handle.click(timeout=_ELEMENT_TIMEOUT_MS)
    if params.clear:
        await handle.fill("")
    delay = params.delay_ms or random.randint(_TYPE_DELAY_MIN, _TYPE_DELAY_MAX)
    await ctx.session.page.keyboard.type(params.text, delay=delay)

    field_type = await handle.get_attribute("type") or ""
    logger.debug("Typed %r into %s", _mask_value(params.text, field_type), params.locator.describe())
    return ActionResult.ok(typed=len(params.text), into=params.locator.describe())


async def _do_find_element(ctx: HandlerContext, params: FindElementParams) -> ActionResult:
    """Find an element through the full fallback ladder and describe it."""
    element = await ctx.resolver.resolve(params.locator)
    if element is None:
        raise ElementNotFoundError(params.locator.describe())

    if params.locator.multiple:
        handles = await element.frame.query_selector_all(element.locator.to_selector())
    else:
        handles = [element.handle]
    described = [await h.evaluate(_DESCRIBE_JS) for h in handles]
    return ActionResult.ok(**element.describe(), count=len(described), elements=described)


async def _do_wait(ctx: HandlerContext, params: WaitParams) -> ActionResult:
    """Wait for an element state, or for a fixed duration."""
    page = ctx.session.page
    if params.locator is None:
        await page.wait_for_timeout(params.timeout_ms)
        return ActionResult.ok(waited_ms=params.timeout_ms)

    try:
        await page.wait_for_selector(params.locator.to_selector(), state=params.state, timeout=params.timeout_ms)
    except PlaywrightTimeout as exc:
        if params.state in ("attached", "visible"):
            raise ElementNotFoundError(params.locator.describe()) from exc
        return ActionResult.fail(f"Timed out waiting for {params.locator.describe()} to be {params.state}")
    return ActionResult.ok(locator=params.locator.describe(), state=params.state)


async def _do_press_key(ctx: HandlerContext, params: PressKeyParams) -> ActionResult:
    """Press a key, optionally focused on an element."""
    if params.locator is not None:
        element = await _require(ctx, params.locator)
        await element.handle.press(params.key)
    else:
        await ctx.session.page.keyboard.press(params.key)
    return ActionResult.ok(key=params.key)


async def _do_get_content(ctx: HandlerContext, params: GetContentParams) -> ActionResult:
    """Return page or element text/HTML."""
    page = ctx.session.page
    if params.locator is not None:
        element = await _require(ctx, params.locator)
        content = await (element.handle.inner_html() if params.format == "html" else element.handle.inner_text())
    else:
        content = await (page.content() if params.format == "html" else page.inner_text("body"))

    truncated = bool(params.max_chars and len(content) > params.max_chars)
    if truncated:
        content = content[: params.max_chars]
    return ActionResult.ok(url=page.url, format=params.format, content=content, truncated=truncated)


async def _do_evaluate(ctx: HandlerContext, params: EvaluateParams) -> ActionResult:
    """Evaluate a JavaScript expression or function in the page."""
    value = await ctx.session.page.evaluate(params.script, params.arg)
    return ActionResult.ok(value=value)


async def _do_cookies(ctx: HandlerContext, params: CookiesParams) -> ActionResult:
    """Get, set, delete or clear cookies on the session's context."""
    context = ctx.session.context
    if params.op == "get":
        cookies = await context.cookies(params.urls or None)
        return ActionResult.ok(cookies=cookies, count=len(cookies))
    if params.op == "set":
        if not params.cookies:
            return ActionResult.fail("No cookies to set", ErrorKind.INVALID_PARAMS)
        await context.add_cookies(params.cookies)
        return ActionResult.ok(set=len(params.cookies))
    if params.op == "delete":
        if not params.name:
            return ActionResult.fail("Cookie name required for delete", ErrorKind.INVALID_PARAMS)
        await context.clear_cookies(name=params.name)
        return ActionResult.ok(deleted=params.name)
    await context.clear_cookies()
    return ActionResult.ok(cleared=True)


# ---------------------------------------------------------------------------
# CAPTCHA and extraction
# ---------------------------------------------------------------------------


async def _do_solve_captcha(ctx: HandlerContext, params: SolveCaptchaParams) -> ActionResult:
    """Solve a text CAPTCHA through OCR, or wait for a managed widget token."""
    solver = ctx.captcha
    mode = params.mode
    provider = None
    if mode in ("auto", "managed"):
        provider = await detect_managed_widget(ctx.session.page)

    if provider is not None:
        outcome = await solver.solve_managed(provider, timeout_seconds=params.timeout_seconds)
    elif mode == "managed":
        return ActionResult.fail("No managed CAPTCHA widget detected")
    else:
        config = solver.make_config(
            image=params.image,
            input=params.locator,
            refresh=params.refresh,
            expected_length=params.expected_length,
            allowed_chars=params.allowed_chars,
            max_retries=params.max_retries,
            timeout_seconds=params.timeout_seconds,
            min_confidence=params.min_confidence,
            verify=params.verify,
            auto_retry=params.auto_retry,
            auto_detect=params.auto_detect,
            lang=params.lang,
            turbo=params.turbo,
        )
        outcome = await solver.solve(config)

    payload = outcome.to_payload()
    if outcome.success:
        return ActionResult(success=True, payload=payload)
    return ActionResult(success=False, error=outcome.error, error_kind=ErrorKind.FAILED, payload=payload)


async def _do_extract_streams(ctx: HandlerContext, params: ExtractStreamsParams) -> ActionResult:
    """Run the multi-pass stream extraction."""
    result = await ctx.extraction.extract(
        scan_frames=params.scan_frames,
        max_frames=params.max_frames,
        capture_network=params.capture_network,
        capture_window_ms=params.capture_window_ms,
    )
    return ActionResult(success=True, payload=result.to_payload())


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


ACTIONS: dict[str, ActionSpec] = {
    spec.name: spec
    for spec in (
        ActionSpec("navigate", NavigateParams, _do_navigate, "Navigate to a URL"),
        ActionSpec("reload", ReloadParams, _do_reload, "Reload the current page"),
        ActionSpec("click", ClickParams, _do_click, "Click an element"),
        ActionSpec("type", TypeParams, _do_type, "Type text into an element"),
        ActionSpec("find_element", FindElementParams, _do_find_element, "Locate an element with fallbacks"),
        ActionSpec("wait", WaitParams, _do_wait, "Wait for an element or a duration"),
        ActionSpec("press_key", PressKeyParams, _do_press_key, "Press a keyboard key"),
        ActionSpec("get_content", GetContentParams, _do_get_content, "Read page or element content"),
        ActionSpec("evaluate", EvaluateParams, _do_evaluate, "Evaluate JavaScript in the page"),
        ActionSpec("cookies", CookiesParams, _do_cookies, "Manage cookies"),
        ActionSpec("solve_captcha", SolveCaptchaParams, _do_solve_captcha, "Solve a CAPTCHA"),
        ActionSpec("extract_streams", ExtractStreamsParams, _do_extract_streams, "Extract media stream URLs"),
    )
}


def _mask_value(value: str, field_type: str) -> str:
    """Mask sensitive values in log output."""
    sensitive_types = {"password", "ssn", "credit-card"}
    if field_type in sensitive_types or len(value) > 30:
        return value[:3] + "***"
    return value
