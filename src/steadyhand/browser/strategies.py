"""Fallback strategies for locator resolution.

Each strategy turns a broken ``Locator`` into an ordered list of candidate
locators for one frame.  The resolver checks every candidate against the
live DOM, so a strategy only has to propose, never to verify.  Strategies
are returned by :func:`default_strategies` in resolution order; earlier means
higher confidence.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from steadyhand.models.locator import Locator, LocatorStrategy

if TYPE_CHECKING:
    from playwright.async_api import Frame


# Candidates proposed per strategy per frame
_CANDIDATE_LIMIT = 8

# Shared in-page helpers.  ``buildSelector`` yields a selector Playwright can
# resolve back to the same node; ``isVisible`` mirrors Playwright's notion.
_HELPERS_JS = """
    const SKIP_TAGS = new Set(['HTML', 'HEAD', 'BODY', 'SCRIPT', 'STYLE', 'NOSCRIPT', 'META', 'LINK']);

    function isVisible(el) {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        return (
            rect.width > 0 &&
            rect.height > 0 &&
            style.display !== 'none' &&
            style.visibility !== 'hidden' &&
            style.opacity !== '0'
        );
    }

    function classList(el) {
        const raw = typeof el.className === 'string' ? el.className : (el.getAttribute('class') || '');
        return raw.split(/\\s+/).filter(Boolean);
    }

    function buildSelector(el) {
        const root = el.getRootNode();
        const tag = el.tagName.toLowerCase();
        if (el.id) {
            const byId = '#' + CSS.escape(el.id);
            if (root.querySelectorAll(byId).length === 1) return byId;
        }
        const classes = classList(el).slice(0, 3).map(c => '.' + CSS.escape(c)).join('');
        if (classes) {
            const byClass = tag + classes;
            if (root.querySelectorAll(byClass).length === 1) return byClass;
        }
        if (el.getAttribute('name')) {
            const byName = `${tag}[name="${CSS.escape(el.getAttribute('name'))}"]`;
            if (root.querySelectorAll(byName).length === 1) return byName;
        }
        // nth-of-type path, at most four levels deep
        const parts = [];
        let node = el;
        for (let depth = 0; node && node.nodeType === 1 && depth < 4; depth++) {
            const parent = node.parentElement;
            const name = node.tagName.toLowerCase();
            if (node.id) {
                parts.unshift('#' + CSS.escape(node.id));
                break;
            }
            if (!parent) {
                parts.unshift(name);
                break;
            }
            const siblings = Array.from(parent.children).filter(c => c.tagName === node.tagName);
            parts.unshift(siblings.length > 1 ? `${name}:nth-of-type(${siblings.indexOf(node) + 1})` : name);
            node = parent;
        }
        return parts.join(' > ');
    }
"""

_PARTIAL_ATTRIBUTE_JS = (
    "(args) => {"
    + _HELPERS_JS
    + """
    const out = [];
    for (const key of args.keys) {
        const needle = key.toLowerCase();
        const matches = [];
        for (const el of document.querySelectorAll('[id], [class]')) {
            if (SKIP_TAGS.has(el.tagName)) continue;
            const id = (el.id || '').toLowerCase();
            const cls = classList(el).join(' ').toLowerCase();
            if (id.includes(needle) || cls.includes(needle)) matches.push(el);
        }
        // Visible elements first, document order otherwise
        matches.sort((a, b) => Number(isVisible(b)) - Number(isVisible(a)));
        for (const el of matches) {
            const sel = buildSelector(el);
            if (!out.includes(sel)) out.push(sel);
            if (out.length >= args.limit) return out;
        }
    }
    return out;
}
"""
)

_TEXT_WALK_JS = (
    "(args) => {"
    + _HELPERS_JS
    + """
    const INTERACTIVE = new Set(['A', 'BUTTON', 'INPUT', 'SELECT', 'TEXTAREA', 'LABEL', 'SUMMARY', 'OPTION']);
    const needle = args.fragment.toLowerCase();
    const tokens = args.keys.slice(1).map(k => k.toLowerCase());
    const scored = [];
    const walker = document.createTreeWalker(document.body || document.documentElement, NodeFilter.SHOW_ELEMENT);
    let visited = 0;
    let node = walker.currentNode;
    while (node && visited < args.maxNodes) {
        visited++;
        if (!SKIP_TAGS.has(node.tagName)) {
            const full = (node.innerText || node.textContent || '').trim();
            const own = Array.from(node.childNodes)
                .filter(c => c.nodeType === 3)
                .map(c => c.textContent)
                .join(' ')
                .trim()
                .toLowerCase();
            const text = (INTERACTIVE.has(node.tagName) && full.length <= 200 ? full.toLowerCase() : own)
                || (node.value || '').toString().toLowerCase();
            const id = (node.id || '').toLowerCase();
            const cls = classList(node).join(' ').toLowerCase();
            let score = 0;
            if (text === needle) score += 5;
            else if (text.includes(needle)) score += 3;
            if (id.includes(needle)) score += 2;
            if (cls.includes(needle)) score += 2;
            for (const token of tokens) {
                if (text.includes(token) || id.includes(token) || cls.includes(token)) score += 1;
            }
            if (score > 0) {
                if (INTERACTIVE.has(node.tagName) || node.getAttribute('role') === 'button') score += 1;
                if (isVisible(node)) score += 1;
                scored.push({ node, score, order: visited });
            }
        }
        node = walker.nextNode();
    }
    scored.sort((a, b) => b.score - a.score || a.order - b.order);
    const out = [];
    for (const entry of scored) {
        const sel = buildSelector(entry.node);
        if (!out.includes(sel)) out.push(sel);
        if (out.length >= args.limit) break;
    }
    return out;
}
"""
)

_SHADOW_DOM_JS = (
    "(args) => {"
    + _HELPERS_JS
    + """
    const out = [];
    const keys = args.keys.map(k => k.toLowerCase());

    function matches(el) {
        const id = (el.id || '').toLowerCase();
        const cls = classList(el).join(' ').toLowerCase();
        const aria = (el.getAttribute('aria-label') || '').toLowerCase();
        const text = (el.textContent || '').trim().toLowerCase();
        return keys.some(k => id.includes(k) || cls.includes(k) || aria.includes(k) || (text.length <= 200 && text.includes(k)));
    }

    function search(root, chain, depth) {
        if (depth > 8 || out.length >= args.limit) return;
        for (const host of root.querySelectorAll('*')) {
            if (!host.shadowRoot) continue;
            const hostChain = [...chain, buildSelector(host)];
            const inner = host.shadowRoot;
            let found = null;
            if (args.css) {
                try { found = inner.querySelector(args.css); } catch (e) { found = null; }
            }
            if (!found) {
                for (const el of inner.querySelectorAll('*')) {
                    if (matches(el)) { found = el; break; }
                }
            }
            if (found) {
                const sel = [...hostChain, buildSelector(found)].join(' >> ');
                if (!out.includes(sel)) out.push(sel);
            }
            search(inner, hostChain, depth + 1);
        }
    }

    search(document, [], 0);
    return out.slice(0, args.limit);
}
"""
)

# Attributes consulted by the accessibility strategy (substring match)
_ACCESSIBILITY_ATTRIBUTES: tuple[str, ...] = (
    "aria-label",
    "title",
    "data-testid",
    "data-test-id",
    "data-test",
    "data-qa",
    "placeholder",
    "alt",
)

# Last-resort containers, most specific first
CONTAINER_SELECTORS: tuple[str, ...] = (
    "video",
    "[role='video']",
    ".video-js",
    ".jwplayer",
    ".plyr",
    ".vjs-tech",
    "#player",
    ".player",
    "[class*='player' i]",
    "[id*='player' i]",
    "iframe[src*='youtube']",
    "iframe[src*='vimeo']",
    "iframe[src*='player']",
    "iframe[src*='embed']",
    "iframe",
    "embed",
    "object",
)


# ---------------------------------------------------------------------------
# Strategy protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ResolutionStrategy(Protocol):
    """One rung of the fallback ladder."""

    name: LocatorStrategy

    async def attempt(self, frame: Frame, locator: Locator, keys: list[str]) -> list[Locator] | None:
        """Return candidate locators for *frame*, best first, or ``None``."""
        ...


def _css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def xpath_literal(value: str) -> str:
    """Quote *value* as an XPath string literal."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{p}"' for p in parts) + ")"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class ExactMatchStrategy:
    """The locator exactly as given."""

    name = LocatorStrategy.EXACT

    async def attempt(self, frame: Frame, locator: Locator, keys: list[str]) -> list[Locator] | None:
        return [locator]


class PartialAttributeStrategy:
    """Substring match of the fragment keys against ``id`` and ``class``."""

    name = LocatorStrategy.PARTIAL_ATTRIBUTE

    async def attempt(self, frame: Frame, locator: Locator, keys: list[str]) -> list[Locator] | None:
        if not keys:
            return None
        selectors = await frame.evaluate(_PARTIAL_ATTRIBUTE_JS, {"keys": keys, "limit": _CANDIDATE_LIMIT})
        return [Locator(css=s) for s in selectors or []]


class XPathVariantStrategy:
    """XPath variants: contains-class, contains-id, attribute equality, text content."""

    name = LocatorStrategy.XPATH_VARIANT

    async def attempt(self, frame: Frame, locator: Locator, keys: list[str]) -> list[Locator] | None:
        if not keys:
            return None
        variants: list[Locator] = []
        for key in keys:
            lit = xpath_literal(key)
            variants.extend(
                Locator(xpath=xp)
                for xp in (
                    f"//*[contains(@class, {lit})]",
                    f"//*[contains(@id, {lit})]",
                    f"//*[@name={lit} or @data-testid={lit} or @value={lit}]",
                    f"//*[contains(normalize-space(text()), {lit})]",
                )
            )
        return variants


class TextWalkStrategy:
    """Bounded DOM walk scoring nodes whose text, class or id holds the fragment."""

    name = LocatorStrategy.TEXT_WALK

    def __init__(self, max_nodes: int = 5_000) -> None:
        self.max_nodes = max_nodes

    async def attempt(self, frame: Frame, locator: Locator, keys: list[str]) -> list[Locator] | None:
        if not keys:
            return None
        selectors = await frame.evaluate(
            _TEXT_WALK_JS,
            {"fragment": keys[0], "keys": keys, "maxNodes": self.max_nodes, "limit": _CANDIDATE_LIMIT},
        )
        return [Locator(css=s) for s in selectors or []]


class AccessibilityStrategy:
    """Match on ``aria-label``, ``role``, ``title`` and test-id style attributes."""

    name = LocatorStrategy.ACCESSIBILITY

    async def attempt(self, frame: Frame, locator: Locator, keys: list[str]) -> list[Locator] | None:
        if not keys:
            return None
        candidates: list[Locator] = []
        for key in keys:
            value = _css_string(key)
            candidates.extend(Locator(css=f'[{attr}*="{value}" i]') for attr in _ACCESSIBILITY_ATTRIBUTES)
            candidates.append(Locator(css=f'[role="{value}" i]'))
        return candidates


class ShadowDomStrategy:
    """Recursive search through open shadow roots."""

    name = LocatorStrategy.SHADOW_DOM

    async def attempt(self, frame: Frame, locator: Locator, keys: list[str]) -> list[Locator] | None:
        selectors = await frame.evaluate(
            _SHADOW_DOM_JS,
            {"css": locator.css or "", "keys": keys, "limit": _CANDIDATE_LIMIT},
        )
        return [Locator(css=s) for s in selectors or []]


class ContainerStrategy:
    """Fixed last-resort player / video / iframe containers."""

    name = LocatorStrategy.CONTAINER

    async def attempt(self, frame: Frame, locator: Locator, keys: list[str]) -> list[Locator] | None:
        return [Locator(css=s) for s in CONTAINER_SELECTORS]


def default_strategies(max_walk_nodes: int = 5_000) -> list[ResolutionStrategy]:
    """Return the seven strategies in resolution order."""
    return [
        ExactMatchStrategy(),
        PartialAttributeStrategy(),
        XPathVariantStrategy(),
        TextWalkStrategy(max_nodes=max_walk_nodes),
        AccessibilityStrategy(),
        ShadowDomStrategy(),
        ContainerStrategy(),
    ]
