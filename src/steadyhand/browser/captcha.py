"""Confidence-gated CAPTCHA solving.

Two protocols:

1. **Text CAPTCHAs** run an explicit state machine
   (``ATTEMPTING → VALIDATING → COMMITTING → SOLVED`` with
   ``REFRESHING`` loops and ``EXHAUSTED`` as the failure terminal).  Each
   attempt screenshots the CAPTCHA, asks the OCR engine for text and only
   types it once every enabled gate (length, charset, confidence) passes.
2. **Managed widgets** (Turnstile, reCAPTCHA, hCaptcha) populate a hidden
   response token themselves; the solver polls that field on a fixed
   interval until it is filled or the timeout expires.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError

from steadyhand.browser.ocr import OcrEngine, OcrOptions, TesseractOcrEngine
from steadyhand.exceptions import CaptchaError, ElementNotFoundError
from steadyhand.models.captcha import (
    CaptchaAttempt,
    CaptchaConfig,
    CaptchaOutcome,
    CaptchaSession,
    CaptchaState,
    ManagedProvider,
)
from steadyhand.models.locator import Locator
from steadyhand.settings.config import CaptchaSettings

if TYPE_CHECKING:
    from playwright.async_api import Page

    from steadyhand.browser.locator import LocatorResolver, ResolvedElement
    from steadyhand.browser.session import BrowserSession

logger = logging.getLogger(__name__)

# Managed widgets: (widget selector, hidden token field selectors, provider)
_MANAGED_WIDGETS: list[tuple[str, tuple[str, ...], ManagedProvider]] = [
    (
        '.cf-turnstile, #cf-turnstile, [data-turnstile-sitekey], iframe[src*="challenges.cloudflare.com"]',
        ('input[name="cf-turnstile-response"]',),
        ManagedProvider.TURNSTILE,
    ),
    (
        '.h-captcha, [data-hcaptcha-sitekey], iframe[src*="hcaptcha.com"]',
        ('[name="h-captcha-response"]', 'textarea[name="g-recaptcha-response"][id^="h-captcha"]'),
        ManagedProvider.HCAPTCHA,
    ),
    (
        '.g-recaptcha, [data-sitekey], #recaptcha, iframe[src*="google.com/recaptcha"], iframe[src*="recaptcha/api"]',
        ("#g-recaptcha-response", 'textarea[name="g-recaptcha-response"]'),
        ManagedProvider.RECAPTCHA,
    ),
]

# Text CAPTCHA catalogue, most specific first
CAPTCHA_IMAGE_SELECTORS: tuple[str, ...] = (
    "#captcha_image",
    "#captcha-image",
    "#captchaImage",
    ".captcha-image",
    ".captcha_image",
    'img[alt*="captcha" i]',
    'img[src*="captcha" i]',
    'img[id*="captcha" i]',
    'img[class*="captcha" i]',
    'canvas[id*="captcha" i]',
    'canvas[class*="captcha" i]',
    "#securityImage",
    "#verify-image",
    ".security-image",
)

CAPTCHA_INPUT_SELECTORS: tuple[str, ...] = (
    "#fcaptcha_code",
    "#captcha_code",
    "#captchaCode",
    "#captcha-code",
    "input#captcha",
    'input[name*="captcha" i]',
    'input[placeholder*="captcha" i]',
    'input[id*="captcha" i]',
    'input[class*="captcha" i]',
    "#securityCode",
    "#verifyCode",
)

CAPTCHA_REFRESH_SELECTORS: tuple[str, ...] = (
    '[id*="refresh" i][id*="captcha" i]',
    '[class*="refresh" i][class*="captcha" i]',
    'a[onclick*="captcha" i]',
    'button[aria-label*="refresh" i]',
    'img[alt*="refresh" i]',
)

# Returns the first visible match from each catalogue (offsetParent set)
_AUTO_DETECT_JS = """
(catalogue) => {
    function firstVisible(selectors) {
        for (const sel of selectors) {
            let nodes = [];
            try { nodes = document.querySelectorAll(sel); } catch (e) { continue; }
            for (const el of nodes) {
                if (el.offsetParent !== null) return sel;
            }
        }
        return null;
    }
    return {
        image: firstVisible(catalogue.images),
        input: firstVisible(catalogue.inputs),
        refresh: firstVisible(catalogue.refresh),
    };
}
"""

_READ_TOKEN_JS = """
(selectors) => {
    for (const sel of selectors) {
        const el = document.querySelector(sel);
        if (el && el.value) return el.value;
    }
    return '';
}
"""

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


async def detect_managed_widget(page: Page) -> ManagedProvider | None:
    """Return the managed widget provider present on *page*, if any."""
    for selector, _fields, provider in _MANAGED_WIDGETS:
        try:
            if await page.query_selector(selector) is not None:
                logger.info("Managed CAPTCHA widget detected: %s on %s", provider.value, page.url)
                return provider
        except PlaywrightError as exc:
            logger.debug("Widget probe %r failed: %s", selector, exc)
    return None


async def detect_text_captcha(page: Page) -> dict[str, str | None]:
    """Scan *page* with the fixed catalogue for a visible image, input and refresh control."""
    try:
        found = await page.evaluate(
            _AUTO_DETECT_JS,
            {
                "images": list(CAPTCHA_IMAGE_SELECTORS),
                "inputs": list(CAPTCHA_INPUT_SELECTORS),
                "refresh": list(CAPTCHA_REFRESH_SELECTORS),
            },
        )
    except PlaywrightError as exc:
        logger.warning("CAPTCHA auto-detection failed: %s", exc)
        return {"image": None, "input": None, "refresh": None}
    logger.debug("CAPTCHA auto-detect: %s", found)
    return {key: found.get(key) for key in ("image", "input", "refresh")}


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


def clean_text(raw: str, allowed_chars: str | None = None) -> str:
    """Strip whitespace, and everything non-alphanumeric when no whitelist is given."""
    text = _WHITESPACE_RE.sub("", raw or "")
    if not allowed_chars:
        text = _NON_ALNUM_RE.sub("", text)
    return text


def check_gates(attempt: CaptchaAttempt, config: CaptchaConfig) -> str | None:
    """Validate *attempt* against the enabled gates.

    Over-length text is trimmed to ``expected_length`` in place; under-length
    text is rejected.

    Returns:
        ``None`` when every gate passes, otherwise the rejection reason.
    """
    text = attempt.text
    expected = config.expected_length
    if expected:
        if len(text) > expected:
            text = text[:expected]
        elif len(text) < expected:
            return f"length {len(text)} < expected {expected}"

    if config.allowed_chars:
        bad = sorted({ch for ch in text if ch not in config.allowed_chars})
        if bad:
            return f"characters outside allowed set: {''.join(bad)}"

    if attempt.confidence <= config.min_confidence:
        return f"confidence {attempt.confidence:.1f} <= {config.min_confidence:.1f}"

    attempt.text = text
    return None


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------


class CaptchaSolver:
    """Drive an OCR engine or a managed widget to a CAPTCHA solution.

    Args:
        session: The injected browser session.
        resolver: Locator resolver used to find image, input and refresh controls.
        ocr: OCR engine; a ``TesseractOcrEngine`` is created on first use if omitted.
        settings: Loop bounds, delays and OCR defaults.
    """

    def __init__(
        self,
        session: BrowserSession,
        resolver: LocatorResolver,
        ocr: OcrEngine | None = None,
        settings: CaptchaSettings | None = None,
    ) -> None:
        self._session = session
        self._resolver = resolver
        self._ocr = ocr
        self._settings = settings or CaptchaSettings()

    @property
    def ocr(self) -> OcrEngine:
        if self._ocr is None:
            self._ocr = TesseractOcrEngine(
                workers=self._settings.ocr_workers,
                tesseract_cmd=self._settings.tesseract_cmd,
            )
        return self._ocr

    def make_config(self, **overrides: object) -> CaptchaConfig:
        """Build a ``CaptchaConfig`` from settings defaults plus non-``None`` overrides."""
        values: dict[str, object] = {
            "max_retries": self._settings.max_retries,
            "timeout_seconds": self._settings.timeout_seconds,
            "min_confidence": self._settings.min_confidence,
            "lang": self._settings.ocr_lang,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return CaptchaConfig(**values)

    # ------------------------------------------------------------------
    # Text CAPTCHA
    # ------------------------------------------------------------------

    async def solve(self, config: CaptchaConfig) -> CaptchaOutcome:
        """Run the OCR state machine until ``SOLVED`` or ``EXHAUSTED``.

        Raises:
            CaptchaError: No image or input locator was given or detected.
        """
        page = self._session.page
        image, input_locator, refresh = config.image, config.input, config.refresh

        if config.auto_detect and (image is None or input_locator is None):
            detected = await detect_text_captcha(page)
            image = image or _as_locator(detected["image"])
            input_locator = input_locator or _as_locator(detected["input"])
            refresh = refresh or _as_locator(detected["refresh"])

        if image is None:
            raise CaptchaError("No CAPTCHA image found")
        if input_locator is None:
            raise CaptchaError("No CAPTCHA input found")

        cs = CaptchaSession(config=config)
        deadline = time.monotonic() + config.timeout_seconds
        timed_out = f"Timed out after {config.timeout_seconds:g}s"
        image_element: ResolvedElement | None = None
        error = ""

        while not cs.is_terminal:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                error = timed_out
                cs.transition(CaptchaState.EXHAUSTED)
                break

            if cs.state is CaptchaState.ATTEMPTING:
                if cs.retries_left <= 0:
                    error = "Max attempts reached"
                    cs.transition(CaptchaState.EXHAUSTED)
                    continue
                attempt = cs.new_attempt()
                try:
                    image_element = await asyncio.wait_for(
                        self._recognize(attempt, image, image_element, config), timeout=remaining
                    )
                except asyncio.TimeoutError:
                    logger.warning("CAPTCHA attempt %d exceeded the %gs deadline", attempt.index, config.timeout_seconds)
                    attempt.rejected_reason = "timed out"
                    error = timed_out
                    cs.transition(CaptchaState.EXHAUSTED)
                    continue
                if not attempt.text:
                    attempt.rejected_reason = "empty recognition"
                    cs.transition(CaptchaState.REFRESHING)
                else:
                    cs.transition(CaptchaState.VALIDATING)

            elif cs.state is CaptchaState.VALIDATING:
                attempt = cs.current
                reason = check_gates(attempt, config) if config.verify else None
                if reason is None:
                    cs.transition(CaptchaState.COMMITTING)
                    continue
                attempt.rejected_reason = reason
                logger.info("CAPTCHA attempt %d rejected: %s", attempt.index, reason)
                if config.auto_retry:
                    cs.transition(CaptchaState.REFRESHING)
                else:
                    error = f"Rejected: {reason}"
                    cs.transition(CaptchaState.EXHAUSTED)

            elif cs.state is CaptchaState.COMMITTING:
                attempt = cs.current
                try:
                    await self._commit(input_locator, attempt.text)
                except (ElementNotFoundError, PlaywrightError) as exc:
                    error = f"Could not type CAPTCHA text: {exc}"
                    attempt.rejected_reason = "commit failed"
                    cs.transition(CaptchaState.EXHAUSTED)
                    continue
                attempt.committed = True
                logger.info("CAPTCHA solved on attempt %d (confidence %.1f)", attempt.index, attempt.confidence)
                cs.transition(CaptchaState.SOLVED)

            elif cs.state is CaptchaState.REFRESHING:
                try:
                    await asyncio.wait_for(self._refresh(refresh or image), timeout=remaining)
                except asyncio.TimeoutError:
                    error = timed_out
                    cs.transition(CaptchaState.EXHAUSTED)
                    continue
                cs.refreshes += 1
                cs.transition(CaptchaState.ATTEMPTING)

        return self._outcome(cs, error)

    async def _recognize(
        self,
        attempt: CaptchaAttempt,
        image: Locator,
        previous: ResolvedElement | None,
        config: CaptchaConfig,
    ) -> ResolvedElement | None:
        # A refresh usually swaps the image node, so the last handle is re-checked
        if previous is None:
            element = await self._resolver.resolve_exact(image)
        else:
            element = await self._resolver.refresh(previous)
        if element is None:
            logger.warning("CAPTCHA image %s not found", image.describe())
            return None
        try:
            png = await element.handle.screenshot(type="png")
            result = await self.ocr.recognize(
                png,
                OcrOptions(
                    lang=config.lang,
                    expected_length=config.expected_length,
                    allowed_chars=config.allowed_chars,
                    min_confidence=config.min_confidence,
                    turbo=config.turbo,
                    exhaustive=attempt.index <= self._settings.exhaustive_ocr_attempts,
                ),
            )
        except Exception as exc:
            logger.warning("OCR attempt %d failed: %s", attempt.index, exc)
            return element
        attempt.raw_text = result.text
        attempt.text = clean_text(result.text, config.allowed_chars)
        attempt.confidence = float(result.confidence)
        logger.debug("CAPTCHA attempt %d read %r (%.1f)", attempt.index, attempt.text, attempt.confidence)
        return element

    async def _refresh(self, target: Locator) -> None:
        try:
            element = await self._resolver.resolve_exact(target)
            if element is None:
                logger.warning("CAPTCHA refresh control %s not found", target.describe())
            else:
                await element.handle.click()
        except PlaywrightError as exc:
            logger.warning("CAPTCHA refresh click failed: %s", exc)
        await asyncio.sleep(self._settings.refresh_wait_ms / 1000)

    async def _commit(self, input_locator: Locator, text: str) -> None:
        element: ResolvedElement | None = await self._resolver.resolve_exact(input_locator)
        if element is None:
            raise ElementNotFoundError(input_locator.describe())
        keyboard = self._session.page.keyboard
        await element.handle.click(click_count=3)
        await keyboard.press("Backspace")
        low = self._settings.type_delay_min_ms
        high = max(low, self._settings.type_delay_max_ms)
        for ch in text:
            await keyboard.type(ch)
            await asyncio.sleep(random.uniform(low, high) / 1000)

    @staticmethod
    def _outcome(cs: CaptchaSession, error: str) -> CaptchaOutcome:
        history = [a.to_dict() for a in cs.attempts]
        if cs.state is CaptchaState.SOLVED:
            attempt = cs.current
            return CaptchaOutcome(
                success=True,
                text=attempt.text,
                raw_text=attempt.raw_text,
                confidence=attempt.confidence,
                attempts=len(cs.attempts),
                refreshes=cs.refreshes,
                history=history,
            )
        return CaptchaOutcome(
            success=False,
            error=error or "Max attempts reached",
            attempts=len(cs.attempts),
            refreshes=cs.refreshes,
            history=history,
        )

    # ------------------------------------------------------------------
    # Managed widgets
    # ------------------------------------------------------------------

    async def solve_managed(
        self,
        provider: ManagedProvider | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> CaptchaOutcome:
        """Poll the widget's hidden response field until it holds a token."""
        page = self._session.page
        provider = provider or await detect_managed_widget(page)
        if provider is None:
            return CaptchaOutcome(success=False, error="No managed CAPTCHA widget detected")

        fields = next(f for _sel, f, p in _MANAGED_WIDGETS if p is provider)
        timeout = timeout_seconds if timeout_seconds is not None else self._settings.managed_timeout_seconds
        interval = self._settings.managed_poll_interval_ms / 1000
        deadline = time.monotonic() + timeout
        polls = 0

        while True:
            polls += 1
            try:
                token = await page.evaluate(_READ_TOKEN_JS, list(fields))
            except PlaywrightError as exc:
                logger.debug("Token poll %d failed: %s", polls, exc)
                token = ""
            if token:
                logger.info("%s token received after %d poll(s)", provider.value, polls)
                return CaptchaOutcome(success=True, provider=provider.value, token=token, polls=polls)
            if time.monotonic() >= deadline:
                return CaptchaOutcome(
                    success=False,
                    provider=provider.value,
                    polls=polls,
                    error=f"Timed out waiting for {provider.value} token",
                )
            await asyncio.sleep(interval)


def _as_locator(selector: str | None) -> Locator | None:
    return Locator(css=selector) if selector else None
