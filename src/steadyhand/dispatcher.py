"""Action dispatcher — the single entry point for callers.

``Dispatcher.execute(name, params)`` validates the raw params against the
action's typed model, runs the handler, and wraps the outcome in an
``ActionResult`` envelope with ``meta = {duration_ms, healed}``.

When a handler reports "not found" and its params carry a locator, the
dispatcher asks the resolver for alternatives, probes them in order and
re-runs the handler once with the first live one.  Healing happens at most
once per call.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from playwright.async_api import Error as PlaywrightError
from pydantic import ValidationError

from steadyhand.browser.captcha import CaptchaSolver
from steadyhand.browser.extraction import ExtractionEngine
from steadyhand.browser.handlers import ACTIONS, ActionSpec, HandlerContext
from steadyhand.browser.locator import LocatorResolver
from steadyhand.browser.ocr import OcrEngine
from steadyhand.browser.session import BrowserSession
from steadyhand.exceptions import (
    ElementNotFoundError,
    InvalidParamsError,
    NavigationError,
    SteadyhandError,
    TransientBrowserError,
    UnknownActionError,
)
from steadyhand.models.action import ActionParams
from steadyhand.models.results import ActionMeta, ActionResult, ErrorKind, HealingRecord
from steadyhand.monitoring.progress import ProgressNotifier
from steadyhand.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class Dispatcher:
    """Route named actions to handlers with a uniform result and healing contract.

    Args:
        session: The caller-owned browser session.
        settings: Resolved settings; defaults to :func:`get_settings`.
        notifier: Progress event fan-out; a sink-less notifier if omitted.
        resolver: Locator resolver override.
        ocr: OCR engine override for the CAPTCHA solver.
        actions: Action registry override.
    """

    def __init__(
        self,
        session: BrowserSession,
        *,
        settings: Settings | None = None,
        notifier: ProgressNotifier | None = None,
        resolver: LocatorResolver | None = None,
        ocr: OcrEngine | None = None,
        actions: dict[str, ActionSpec] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session = session
        self.notifier = notifier or ProgressNotifier()
        self.resolver = resolver or LocatorResolver(session, self.settings.locator)
        self.actions = dict(actions if actions is not None else ACTIONS)
        self.context = HandlerContext(
            session=session,
            resolver=self.resolver,
            captcha=CaptchaSolver(session, self.resolver, ocr=ocr, settings=self.settings.captcha),
            extraction=ExtractionEngine(session, self.settings.extraction),
            settings=self.settings,
        )
        self.heal_attempts = 0

    def action_names(self) -> list[str]:
        return sorted(self.actions)

    async def execute(self, name: str, params: dict[str, Any] | None = None) -> ActionResult:
        """Execute action *name* and return the enriched result envelope."""
        started = time.monotonic()
        spec = self.actions.get(name)
        if spec is None:
            error = UnknownActionError(name)
            logger.warning("%s", error)
            await self.notifier.fail(name, str(error))
            return self._envelope(ActionResult.fail(str(error), ErrorKind.UNKNOWN_ACTION), started)

        try:
            typed = spec.params_model.model_validate(params or {})
        except ValidationError as exc:
            error = InvalidParamsError(name, _summarize_validation(exc))
            logger.warning("%s", error)
            await self.notifier.fail(name, str(error))
            return self._envelope(ActionResult.fail(str(error), ErrorKind.INVALID_PARAMS), started)

        await self.notifier.start(name)
        result = await self._invoke(spec, typed)

        if result.not_found and typed.target is not None:
            result = await self._heal(spec, typed, result)

        envelope = self._envelope(result, started)
        if envelope.success:
            await self.notifier.complete(name, duration_ms=envelope.meta.duration_ms, healed=envelope.meta.healed)
        else:
            await self.notifier.fail(name, envelope.error or "", kind=envelope.error_kind.value)
        logger.info(
            "Action %s %s in %dms%s",
            name,
            "succeeded" if envelope.success else f"failed ({envelope.error_kind.value})",
            envelope.meta.duration_ms,
            " after healing" if envelope.meta.healed else "",
        )
        return envelope

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _invoke(self, spec: ActionSpec, params: ActionParams) -> ActionResult:
        """Run a handler, converting exceptions to failed results."""
        try:
            return await spec.handler(self.context, params)
        except ElementNotFoundError as exc:
            return ActionResult.fail(str(exc), ErrorKind.NOT_FOUND)
        except TransientBrowserError as exc:
            return ActionResult.fail(str(exc), ErrorKind.TRANSIENT, attempts=exc.attempts)
        except NavigationError as exc:
            return ActionResult.fail(str(exc), ErrorKind.FAILED, url=exc.url)
        except (SteadyhandError, PlaywrightError) as exc:
            logger.warning("Action %s raised: %s", spec.name, exc)
            return ActionResult.fail(str(exc) or type(exc).__name__)
        except Exception as exc:
            logger.exception("Unexpected error in action %s", spec.name)
            return ActionResult.fail(f"{type(exc).__name__}: {exc}")

    async def _heal(self, spec: ActionSpec, params: ActionParams, failed: ActionResult) -> ActionResult:
        """Single healing escalation: find a live alternative and retry once."""
        original = params.target
        self.heal_attempts += 1
        await self.notifier.update(spec.name, f"Healing {original.describe()}")

        alternatives = await self.resolver.heal(original)
        for alternative in alternatives:
            if not await alternative.is_attached():
                logger.debug("Alternative %s is stale, skipping", alternative.locator.describe())
                continue

            healed_locator = alternative.locator.model_copy(update={"multiple": original.multiple})
            retried = await self._invoke(spec, params.with_locator(healed_locator))
            record = HealingRecord(
                original=original.describe(),
                healed=healed_locator.describe(),
                strategy=alternative.strategy.value,
                confidence=alternative.confidence,
            )
            logger.info(
                "Healed %s -> %s via %s (%s)",
                record.original,
                record.healed,
                record.strategy,
                "ok" if retried.success else "still failing",
            )
            return retried.model_copy(update={"healing": record})

        logger.info("No usable alternative for %s", original.describe())
        return failed

    @staticmethod
    def _envelope(result: ActionResult, started: float) -> ActionResult:
        duration_ms = int((time.monotonic() - started) * 1000)
        meta = ActionMeta(duration_ms=duration_ms, healed=result.healing is not None)
        return result.model_copy(update={"meta": meta})


def _summarize_validation(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "params"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)
