"""Resilient page navigation with wait-strategy fallback and transient retry.

Two layers of recovery:

* ``resilient_goto`` / ``resilient_reload`` try ``networkidle`` first and fall
  back to ``load`` then ``domcontentloaded`` on timeout.  Pages with
  long-polling analytics or open WebSockets never reach ``networkidle``.
* ``with_transient_retry`` re-runs a whole navigation when it fails with a
  transient error (context destroyed mid-navigation, detached frame,
  interrupted navigation), a bounded number of times with a fixed backoff.
  On exhaustion the last error surfaces as ``TransientBrowserError``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

from playwright.async_api import Error as PlaywrightError, Page, Response, TimeoutError as PlaywrightTimeout

from steadyhand.exceptions import NavigationError, TransientBrowserError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Playwright error substrings that indicate non-retryable navigation failures.
_NON_RETRYABLE_ERRORS: tuple[str, ...] = (
    "ERR_NAME_NOT_RESOLVED",
    "ERR_CONNECTION_REFUSED",
    "ERR_CONNECTION_RESET",
    "ERR_CONNECTION_CLOSED",
    "ERR_SSL_PROTOCOL_ERROR",
    "ERR_CERT_AUTHORITY_INVALID",
    "ERR_CERT_COMMON_NAME_INVALID",
    "ERR_ADDRESS_UNREACHABLE",
)

# Lower-cased substrings of errors worth retrying from scratch.
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "execution context was destroyed",
    "frame was detached",
    "frame got detached",
    "navigation interrupted",
    "interrupted by another navigation",
    "net::err_aborted",
    "net::err_network_changed",
    "net::err_timed_out",
    "timeout",
    "cannot find context with specified id",
)

WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]

_FALLBACK_STRATEGY: list[WaitUntil] = ["networkidle", "load", "domcontentloaded"]


def is_transient_error(exc: BaseException) -> bool:
    """Return ``True`` when *exc* looks like a transient navigation/context error."""
    if isinstance(exc, NavigationError):
        return False
    if isinstance(exc, (PlaywrightTimeout, asyncio.TimeoutError)):
        return True
    message = str(exc).lower()
    return any(pattern in message for pattern in _TRANSIENT_PATTERNS)


async def with_transient_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
) -> T:
    """Run *operation*, retrying transient failures with a fixed backoff.

    Non-transient errors propagate immediately.

    Raises:
        TransientBrowserError: If every attempt failed transiently.
    """
    attempts = max(1, max_attempts)
    last_exc: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_transient_error(exc):
                raise
            last_exc = exc
            if attempt < attempts:
                logger.warning(
                    "%s failed transiently (attempt %d/%d), retrying in %.1fs: %s",
                    description,
                    attempt,
                    attempts,
                    backoff_seconds,
                    exc,
                )
                await asyncio.sleep(backoff_seconds)

    logger.error("%s gave up after %d attempts: %s", description, attempts, last_exc)
    raise TransientBrowserError(description, attempts, str(last_exc)) from last_exc


async def resilient_goto(
    page: Page,
    url: str,
    *,
    timeout_ms: int = 30_000,
    wait_until: WaitUntil = "networkidle",
) -> Response | None:
    """Navigate to *url* with automatic wait-strategy fallback.

    Tries *wait_until* first (default ``networkidle``).  If that times out,
    retries with progressively less strict strategies (``load`` then
    ``domcontentloaded``) using the same timeout for each attempt.

    Args:
        page: Playwright page instance.
        url: Target URL to navigate to.
        timeout_ms: Timeout per attempt in milliseconds.
        wait_until: Preferred initial wait strategy.

    Returns:
        The Playwright ``Response`` for the main frame navigation,
        or ``None`` if the page did not produce a response.

    Raises:
        NavigationError: On DNS, connection or TLS failures.
        PlaywrightTimeout: If all fallback strategies also time out.
    """
    strategies = _build_fallback_chain(wait_until)

    last_error: PlaywrightTimeout | None = None
    for strategy in strategies:
        try:
            logger.debug("goto %s (wait_until=%s, timeout=%dms)", url, strategy, timeout_ms)
            return await page.goto(url, wait_until=strategy, timeout=timeout_ms)
        except PlaywrightError as exc:
            _raise_if_non_retryable(exc, url)
            if isinstance(exc, PlaywrightTimeout):
                logger.warning(
                    "Navigation to %s timed out with wait_until=%s, trying a weaker strategy",
                    url,
                    strategy,
                )
                last_error = exc
            else:
                raise

    raise last_error  # type: ignore[misc]


async def resilient_reload(
    page: Page,
    *,
    timeout_ms: int = 15_000,
    wait_until: WaitUntil = "networkidle",
) -> Response | None:
    """Reload the current page with the same fallback logic as :func:`resilient_goto`."""
    strategies = _build_fallback_chain(wait_until)

    last_error: PlaywrightTimeout | None = None
    for strategy in strategies:
        try:
            logger.debug("reload (wait_until=%s, timeout=%dms)", strategy, timeout_ms)
            return await page.reload(wait_until=strategy, timeout=timeout_ms)
        except PlaywrightError as exc:
            _raise_if_non_retryable(exc, page.url)
            if isinstance(exc, PlaywrightTimeout):
                logger.warning("Reload timed out with wait_until=%s, trying a weaker strategy", strategy)
                last_error = exc
            else:
                raise

    raise last_error  # type: ignore[misc]


def _raise_if_non_retryable(exc: PlaywrightError, url: str) -> None:
    error_msg = str(exc)
    for pattern in _NON_RETRYABLE_ERRORS:
        if pattern in error_msg:
            reason = pattern.replace("ERR_", "").replace("_", " ").lower()
            logger.warning("Navigation to %s failed (non-retryable): %s", url, pattern)
            raise NavigationError(url, reason) from exc


def _build_fallback_chain(preferred: WaitUntil) -> list[WaitUntil]:
    """Return the fallback chain starting from *preferred*.

    If *preferred* is in the default chain, returns from that point onward.
    Otherwise returns ``[preferred]`` followed by the full default chain.
    """
    if preferred in _FALLBACK_STRATEGY:
        idx = _FALLBACK_STRATEGY.index(preferred)
        return _FALLBACK_STRATEGY[idx:]
    return [preferred, *_FALLBACK_STRATEGY]
