"""Unit tests for steadyhand.browser.locator — ladder order, healing and stale refresh."""

from __future__ import annotations

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from steadyhand.browser.locator import LocatorResolver, ResolvedElement
from steadyhand.browser.session import BrowserSession
from steadyhand.browser.strategies import _PARTIAL_ATTRIBUTE_JS, _TEXT_WALK_JS, ExactMatchStrategy
from steadyhand.models.locator import STRATEGY_ORDER, Locator, LocatorStrategy
from steadyhand.settings.config import LocatorSettings


class FakeStrategy:
    """Strategy double that proposes a fixed candidate list."""

    def __init__(self, name, candidates=None, *, error=None, delay=0.0):
        self.name = name
        self.candidates = candidates or []
        self.error = error
        self.delay = delay
        self.calls = 0

    async def attempt(self, frame, locator, keys):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.candidates)


def _dom(frame, present: dict):
    """Make *frame* answer ``query_selector`` from a selector->handle map."""

    async def query(selector):
        return present.get(selector)

    frame.query_selector.side_effect = query


def _ladder(per_strategy: dict[LocatorStrategy, list[Locator]]) -> list[FakeStrategy]:
    return [FakeStrategy(name, per_strategy.get(name, [])) for name in STRATEGY_ORDER]


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


class TestResolve:
    """Strict ladder walk."""

    @pytest.mark.anyio
    async def test_exact_match_wins(self, page, session, make_handle) -> None:
        handle = make_handle()
        _dom(page.main_frame, {"#submit-btn": handle})
        loc = Locator(css="#submit-btn")
        resolver = LocatorResolver(session)

        found = await resolver.resolve(loc)

        assert found is not None
        assert found.handle is handle
        assert found.strategy is LocatorStrategy.EXACT
        assert found.confidence is None
        assert found.is_exact

    @pytest.mark.anyio
    @pytest.mark.parametrize("winner", range(1, len(STRATEGY_ORDER)))
    async def test_first_successful_strategy_wins(self, winner, page, session, make_handle) -> None:
        """Strategy k succeeds; nothing after k is consulted."""
        names = STRATEGY_ORDER
        ladder = _ladder({name: [Locator(css=f"#cand-{i}")] for i, name in enumerate(names)})
        present = {f"#cand-{i}": make_handle() for i in range(winner, len(names))}
        _dom(page.main_frame, present)
        resolver = LocatorResolver(session, strategies=ladder)

        found = await resolver.resolve(Locator(css="#missing"))

        assert found.strategy is names[winner]
        assert found.locator.css == f"#cand-{winner}"
        assert found.confidence == round(1.0 - 0.1 * winner, 2)
        assert all(s.calls == 1 for s in ladder[: winner + 1])
        assert all(s.calls == 0 for s in ladder[winner + 1 :])

    @pytest.mark.anyio
    async def test_nothing_found_returns_none(self, session) -> None:
        resolver = LocatorResolver(session, strategies=_ladder({}))
        assert await resolver.resolve(Locator(css="#nope")) is None

    @pytest.mark.anyio
    async def test_strategy_error_is_skipped(self, page, session, make_handle) -> None:
        handle = make_handle()
        _dom(page.main_frame, {"#later": handle})
        ladder = [
            FakeStrategy(LocatorStrategy.EXACT),
            FakeStrategy(LocatorStrategy.PARTIAL_ATTRIBUTE, error=RuntimeError("boom")),
            FakeStrategy(LocatorStrategy.XPATH_VARIANT, [Locator(css="#later")]),
        ]

        found = await LocatorResolver(session, strategies=ladder).resolve(Locator(css="#x"))

        assert found.strategy is LocatorStrategy.XPATH_VARIANT

    @pytest.mark.anyio
    async def test_strategy_timeout_is_skipped(self, page, session, make_handle) -> None:
        _dom(page.main_frame, {"#slow": make_handle(), "#fast": make_handle()})
        ladder = [
            FakeStrategy(LocatorStrategy.PARTIAL_ATTRIBUTE, [Locator(css="#slow")], delay=5),
            FakeStrategy(LocatorStrategy.TEXT_WALK, [Locator(css="#fast")]),
        ]
        resolver = LocatorResolver(session, LocatorSettings(strategy_timeout_ms=20), strategies=ladder)

        found = await resolver.resolve(Locator(css="#x"))

        assert found.locator.css == "#fast"

    @pytest.mark.anyio
    async def test_query_errors_never_raise(self, page, session) -> None:
        page.main_frame.query_selector.side_effect = PlaywrightError("Unexpected token")
        resolver = LocatorResolver(session)

        assert await resolver.resolve(Locator(css="div[[")) is None

    @pytest.mark.anyio
    async def test_child_frame_match(self, make_page, make_frame, make_handle) -> None:
        child = make_frame("https://embed.example/player")
        page = make_page(children=[child])
        _dom(child, {"#play": make_handle()})

        found = await LocatorResolver(BrowserSession.attach(page)).resolve(Locator(css="#play"))

        assert found.frame is child
        assert found.frame_index == 1

    @pytest.mark.anyio
    async def test_multiple_flag_preserved(self, page, session, make_handle) -> None:
        _dom(page.main_frame, {".row-item": make_handle()})
        ladder = _ladder({LocatorStrategy.PARTIAL_ATTRIBUTE: [Locator(css=".row-item")]})

        found = await LocatorResolver(session, strategies=ladder).resolve(Locator(css=".row", multiple=True))

        assert found.locator.multiple is True

    @pytest.mark.anyio
    async def test_resolve_exact_skips_fallbacks(self, page, session, make_handle) -> None:
        _dom(page.main_frame, {"#alt": make_handle()})
        ladder = _ladder({LocatorStrategy.PARTIAL_ATTRIBUTE: [Locator(css="#alt")]})
        resolver = LocatorResolver(session, strategies=ladder)

        assert await resolver.resolve_exact(Locator(css="#gone")) is None
        assert ladder[1].calls == 0

    @pytest.mark.anyio
    async def test_exact_waits_for_late_attach(self, page, session, make_handle) -> None:
        late = make_handle()
        page.main_frame.wait_for_selector.return_value = late
        resolver = LocatorResolver(session, settings=LocatorSettings(strategy_timeout_ms=250))

        found = await resolver.resolve_exact(Locator(css="#late"))

        assert found.handle is late
        assert found.strategy is LocatorStrategy.EXACT
        page.main_frame.wait_for_selector.assert_awaited_once_with("#late", state="attached", timeout=250)

    @pytest.mark.anyio
    async def test_exact_wait_timeout_falls_through(self, page, session, make_handle) -> None:
        page.main_frame.wait_for_selector.side_effect = PlaywrightTimeout("Timeout 250ms exceeded")
        _dom(page.main_frame, {"#alt": make_handle()})
        ladder = _ladder({LocatorStrategy.PARTIAL_ATTRIBUTE: [Locator(css="#alt")]})
        ladder[0] = ExactMatchStrategy()

        found = await LocatorResolver(session, strategies=ladder).resolve(Locator(css="#gone"))

        assert found.strategy is LocatorStrategy.PARTIAL_ATTRIBUTE
        assert found.locator.css == "#alt"


# ---------------------------------------------------------------------------
# heal
# ---------------------------------------------------------------------------


class TestHeal:
    """Alternative collection for a broken locator."""

    @pytest.mark.anyio
    async def test_submit_button_renamed(self, page, session, make_handle) -> None:
        """``#submit-btn`` renamed to ``submit-button``: partial attribute ranks first."""

        async def evaluate(script, args=None):
            if script == _PARTIAL_ATTRIBUTE_JS:
                return ["button.submit-button"]
            if script == _TEXT_WALK_JS:
                return ["#cta"]
            return []

        page.main_frame.evaluate.side_effect = evaluate
        _dom(page.main_frame, {"button.submit-button": make_handle(), "#cta": make_handle()})

        alternatives = await LocatorResolver(session).heal(Locator(css="#submit-btn"))

        assert [a.strategy for a in alternatives] == [LocatorStrategy.PARTIAL_ATTRIBUTE, LocatorStrategy.TEXT_WALK]
        assert alternatives[0].locator.css == "button.submit-button"
        assert alternatives[0].confidence == 0.9
        assert alternatives[0].confidence > alternatives[1].confidence

    @pytest.mark.anyio
    async def test_original_never_proposed(self, page, session, make_handle) -> None:
        _dom(page.main_frame, {"#orig": make_handle(), "#other": make_handle()})
        ladder = _ladder(
            {
                LocatorStrategy.EXACT: [Locator(css="#orig")],
                LocatorStrategy.PARTIAL_ATTRIBUTE: [Locator(css="#orig"), Locator(css="#other")],
            }
        )

        alternatives = await LocatorResolver(session, strategies=ladder).heal(Locator(css="#orig"))

        assert [a.locator.css for a in alternatives] == ["#other"]
        assert ladder[0].calls == 0

    @pytest.mark.anyio
    async def test_capped_at_max_alternatives(self, page, session, make_handle) -> None:
        present = {f"#c{i}": make_handle() for i in range(6)}
        _dom(page.main_frame, present)
        ladder = _ladder(
            {
                LocatorStrategy.PARTIAL_ATTRIBUTE: [Locator(css="#c0"), Locator(css="#c1")],
                LocatorStrategy.XPATH_VARIANT: [Locator(css="#c2"), Locator(css="#c3")],
                LocatorStrategy.CONTAINER: [Locator(css="#c4")],
            }
        )

        alternatives = await LocatorResolver(session, strategies=ladder).heal(Locator(css="#x"), max_alternatives=3)

        assert [a.locator.css for a in alternatives] == ["#c0", "#c1", "#c2"]
        assert ladder[-1].calls == 0

    @pytest.mark.anyio
    async def test_duplicates_across_strategies_dropped(self, page, session, make_handle) -> None:
        _dom(page.main_frame, {"#dup": make_handle()})
        ladder = _ladder(
            {
                LocatorStrategy.PARTIAL_ATTRIBUTE: [Locator(css="#dup")],
                LocatorStrategy.ACCESSIBILITY: [Locator(css="#dup")],
            }
        )

        alternatives = await LocatorResolver(session, strategies=ladder).heal(Locator(css="#x"))

        assert len(alternatives) == 1

    @pytest.mark.anyio
    async def test_no_alternatives(self, session) -> None:
        assert await LocatorResolver(session, strategies=_ladder({})).heal(Locator(css="#x")) == []


# ---------------------------------------------------------------------------
# Staleness
# ---------------------------------------------------------------------------


class TestStaleness:
    """is_attached / refresh."""

    @pytest.mark.anyio
    async def test_detached_frame_is_stale(self, make_frame, make_handle) -> None:
        frame = make_frame(detached=True)
        element = ResolvedElement(make_handle(), frame, Locator(css="#a"), LocatorStrategy.EXACT)
        assert await element.is_attached() is False

    @pytest.mark.anyio
    async def test_evaluate_error_is_stale(self, make_frame, make_handle) -> None:
        handle = make_handle()
        handle.evaluate.side_effect = PlaywrightError("Element is not attached to the DOM")
        element = ResolvedElement(handle, make_frame(), Locator(css="#a"), LocatorStrategy.EXACT)
        assert await element.is_attached() is False

    @pytest.mark.anyio
    async def test_refresh_keeps_live_element(self, page, session, make_handle) -> None:
        element = ResolvedElement(make_handle(), page.main_frame, Locator(css="#a"), LocatorStrategy.EXACT)
        assert await LocatorResolver(session).refresh(element) is element

    @pytest.mark.anyio
    async def test_refresh_re_resolves_stale_element(self, page, session, make_handle) -> None:
        fresh = make_handle()
        _dom(page.main_frame, {"#a": fresh})
        stale = ResolvedElement(make_handle(attached=False), page.main_frame, Locator(css="#a"), LocatorStrategy.EXACT)

        refreshed = await LocatorResolver(session).refresh(stale)

        assert refreshed is not stale
        assert refreshed.handle is fresh

    def test_describe(self, make_frame, make_handle) -> None:
        element = ResolvedElement(
            make_handle(), make_frame(), Locator(xpath="//a"), LocatorStrategy.XPATH_VARIANT, frame_index=2
        )
        assert element.describe() == {
            "selector": "xpath=//a",
            "strategy": "xpath_variant",
            "confidence": 0.8,
            "frame_index": 2,
        }
