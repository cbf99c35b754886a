"""Locator resolution with ranked fallback strategies and healing.

``LocatorResolver.resolve`` walks the strategy ladder in strict order and
stops at the first candidate that matches a live element.  ``heal`` walks the
same ladder (minus the exact match that already failed) and collects up to
N alternatives for the caller to probe.  Neither ever raises: a strategy that
errors or exceeds its time box contributes nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from playwright.async_api import ElementHandle, Error as PlaywrightError, Frame
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from steadyhand.browser.session import BrowserSession
from steadyhand.browser.strategies import ResolutionStrategy, default_strategies
from steadyhand.models.locator import Locator, LocatorStrategy, strategy_confidence
from steadyhand.settings.config import LocatorSettings

logger = logging.getLogger(__name__)


@dataclass
class ResolvedElement:
    """A live element handle, the frame it lives in, and how it was found."""

    handle: ElementHandle
    frame: Frame
    locator: Locator
    strategy: LocatorStrategy
    frame_index: int = 0

    @property
    def confidence(self) -> float | None:
        return strategy_confidence(self.strategy)

    @property
    def is_exact(self) -> bool:
        return self.strategy is LocatorStrategy.EXACT

    async def is_attached(self) -> bool:
        """Return ``True`` while the node is still connected to a live frame."""
        if self.frame.is_detached():
            return False
        try:
            return bool(await self.handle.evaluate("el => el.isConnected"))
        except PlaywrightError:
            return False

    def describe(self) -> dict[str, object]:
        return {
            "selector": self.locator.to_selector(),
            "strategy": self.strategy.value,
            "confidence": self.confidence,
            "frame_index": self.frame_index,
        }


class LocatorResolver:
    """Resolve ``Locator`` descriptions to live elements on the session's page.

    Args:
        session: The injected browser session.
        settings: Time box, frame cap and healing limits.
        strategies: Override the strategy ladder (order matters).
    """

    def __init__(
        self,
        session: BrowserSession,
        settings: LocatorSettings | None = None,
        strategies: list[ResolutionStrategy] | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or LocatorSettings()
        self._strategies = strategies if strategies is not None else default_strategies(self._settings.max_walk_nodes)

    @property
    def strategies(self) -> list[ResolutionStrategy]:
        return list(self._strategies)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, locator: Locator) -> ResolvedElement | None:
        """Return the first element found by the strategy ladder, or ``None``."""
        keys = locator.fragment_keys()
        for strategy in self._strategies:
            found = await self._run_strategy(strategy, locator, keys, limit=1, exclude=set())
            if found:
                element = found[0]
                if not element.is_exact:
                    logger.info(
                        "Resolved %s via %s -> %s",
                        locator.describe(),
                        strategy.name.value,
                        element.locator.describe(),
                    )
                return element
        logger.debug("No strategy resolved %s", locator.describe())
        return None

    async def resolve_exact(self, locator: Locator) -> ResolvedElement | None:
        """Resolve *locator* exactly as given, without fallbacks."""
        for strategy in self._strategies:
            if strategy.name is LocatorStrategy.EXACT:
                found = await self._run_strategy(strategy, locator, [], limit=1, exclude=set())
                return found[0] if found else None
        return None

    async def heal(self, locator: Locator, max_alternatives: int | None = None) -> list[ResolvedElement]:
        """Collect up to *max_alternatives* replacement elements for a broken *locator*.

        Alternatives come back in strategy order, so the first one carries
        the highest confidence.  The original locator is never proposed.
        """
        limit = max_alternatives or self._settings.max_alternatives
        keys = locator.fragment_keys()
        seen = {locator.to_selector()}
        alternatives: list[ResolvedElement] = []

        for strategy in self._strategies:
            if strategy.name is LocatorStrategy.EXACT:
                continue
            remaining = limit - len(alternatives)
            if remaining <= 0:
                break
            alternatives.extend(await self._run_strategy(strategy, locator, keys, limit=remaining, exclude=seen))

        logger.info(
            "Healing %s produced %d alternative(s): %s",
            locator.describe(),
            len(alternatives),
            ", ".join(f"{a.locator.describe()} ({a.strategy.value})" for a in alternatives) or "none",
        )
        return alternatives

    async def refresh(self, element: ResolvedElement) -> ResolvedElement | None:
        """Return *element* if it is still attached, otherwise re-resolve it."""
        if await element.is_attached():
            return element
        logger.debug("Element %s is stale, re-resolving", element.locator.describe())
        return await self.resolve(element.locator)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_strategy(
        self,
        strategy: ResolutionStrategy,
        locator: Locator,
        keys: list[str],
        *,
        limit: int,
        exclude: set[str],
    ) -> list[ResolvedElement]:
        found: list[ResolvedElement] = []
        timeout = self._settings.strategy_timeout_ms / 1000
        try:
            await asyncio.wait_for(self._collect(strategy, locator, keys, limit, exclude, found), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("Strategy %s timed out after %.1fs", strategy.name.value, timeout)
        except Exception as exc:
            logger.debug("Strategy %s failed: %s", strategy.name.value, exc)
        if not found and strategy.name is LocatorStrategy.EXACT:
            element = await self._wait_attached(locator)
            if element is not None:
                found.append(element)
        return found[:limit]

    async def _wait_attached(self, locator: Locator) -> ResolvedElement | None:
        """Give a late-rendering exact match one bounded wait in the main frame."""
        frame = self._session.page.main_frame
        selector = locator.to_selector()
        try:
            handle = await frame.wait_for_selector(
                selector, state="attached", timeout=self._settings.strategy_timeout_ms
            )
        except PlaywrightTimeoutError:
            logger.debug("Exact selector %r did not attach within %dms", selector, self._settings.strategy_timeout_ms)
            return None
        except PlaywrightError as exc:
            logger.debug("Waiting for %r failed: %s", selector, exc)
            return None
        if handle is None:
            return None
        return ResolvedElement(handle=handle, frame=frame, locator=locator, strategy=LocatorStrategy.EXACT)

    async def _collect(
        self,
        strategy: ResolutionStrategy,
        locator: Locator,
        keys: list[str],
        limit: int,
        exclude: set[str],
        found: list[ResolvedElement],
    ) -> None:
        for index, frame in enumerate(self._session.frames(self._settings.max_frames)):
            try:
                candidates = await strategy.attempt(frame, locator, keys)
            except PlaywrightError as exc:
                logger.debug("Strategy %s skipped frame %d: %s", strategy.name.value, index, exc)
                continue
            for candidate in candidates or []:
                selector = candidate.to_selector()
                if selector in exclude:
                    continue
                handle = await self._query(frame, selector)
                if handle is None:
                    continue
                exclude.add(selector)
                found.append(
                    ResolvedElement(
                        handle=handle,
                        frame=frame,
                        locator=candidate.model_copy(update={"multiple": locator.multiple}),
                        strategy=strategy.name,
                        frame_index=index,
                    )
                )
                if len(found) >= limit:
                    return

    @staticmethod
    async def _query(frame: Frame, selector: str) -> ElementHandle | None:
        try:
            return await frame.query_selector(selector)
        except PlaywrightError as exc:
            # Invalid selector syntax for this engine, or the frame went away
            logger.debug("Query %r failed: %s", selector, exc)
            return None
