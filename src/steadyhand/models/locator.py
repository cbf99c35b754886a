"""Locator models — how the caller describes an element to find.

A ``Locator`` carries exactly one of a CSS selector, an XPath expression, or
a text fragment.  Callers may pass a bare string, which is treated as CSS.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, model_validator

_ID_RE = re.compile(r"#([A-Za-z0-9_-][\w-]*)")
_CLASS_RE = re.compile(r"\.([A-Za-z_-][\w-]*)")
_ATTR_VALUE_RE = re.compile(r"""\[[\w:-]+\s*[~|^$*]?=\s*["']?([^"'\]]+)["']?\s*\]""")
_TAG_RE = re.compile(r"^\s*([A-Za-z][\w-]*)")
_XPATH_LITERAL_RE = re.compile(r"""["']([^"']+)["']""")
_XPATH_STEP_RE = re.compile(r"([A-Za-z][\w-]*)\s*(?:\[[^\]]*\])?\s*$")
_TOKEN_SPLIT_RE = re.compile(r"[-_\s]+")

MIN_TOKEN_LENGTH = 3


class Locator(BaseModel):
    """Description of an element: one of ``css``, ``xpath`` or ``text``."""

    css: str | None = None
    xpath: str | None = None
    text: str | None = None
    multiple: bool = False

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"css": value}
        if isinstance(value, dict) and "selector" in value and "css" not in value:
            value = {**value, "css": value["selector"]}
            value.pop("selector")
        return value

    @model_validator(mode="after")
    def _exactly_one_target(self) -> "Locator":
        targets = [t for t in (self.css, self.xpath, self.text) if t and t.strip()]
        if len(targets) != 1:
            raise ValueError("locator needs exactly one of css, xpath or text")
        return self

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def to_selector(self) -> str:
        """Return a Playwright selector string for this locator."""
        if self.css:
            return self.css
        if self.xpath:
            return f"xpath={self.xpath}"
        return f"text={self.text}"

    def describe(self) -> str:
        """Short human-readable form used in logs and error messages."""
        if self.css:
            return self.css
        if self.xpath:
            return f"xpath:{self.xpath}"
        return f"text:{self.text!r}"

    def fragment(self) -> str:
        """Return the most identifying fragment of the locator.

        ``#submit-btn`` gives ``submit-btn``, ``button.primary`` gives
        ``primary``, ``input[name="email"]`` gives ``email``, an XPath gives
        its first quoted literal or final step name, and a text locator gives
        the text itself.
        """
        if self.text:
            return self.text.strip()
        if self.xpath:
            literal = _XPATH_LITERAL_RE.search(self.xpath)
            if literal:
                return literal.group(1).strip()
            step = _XPATH_STEP_RE.search(self.xpath)
            return step.group(1) if step else self.xpath.strip()

        css = self.css or ""
        # The last compound selector is the target element
        last = re.split(r"\s*[>+~\s]\s*", css.strip())[-1]
        for pattern in (_ID_RE, _CLASS_RE, _ATTR_VALUE_RE):
            match = pattern.search(last)
            if match:
                return match.group(1).strip()
        tag = _TAG_RE.match(last)
        return tag.group(1) if tag else css.strip()

    def fragment_keys(self) -> list[str]:
        """Return search keys strongest first: the fragment, then its tokens.

        Tokens shorter than three characters are dropped and longer tokens
        come first.
        """
        fragment = self.fragment()
        if not fragment:
            return []
        keys = [fragment]
        tokens = [t for t in _TOKEN_SPLIT_RE.split(fragment) if len(t) >= MIN_TOKEN_LENGTH]
        for token in sorted(tokens, key=len, reverse=True):
            if token.lower() not in {k.lower() for k in keys}:
                keys.append(token)
        return keys


class LocatorStrategy(str, Enum):
    """Fallback strategies in resolution order."""

    EXACT = "exact"
    PARTIAL_ATTRIBUTE = "partial_attribute"
    XPATH_VARIANT = "xpath_variant"
    TEXT_WALK = "text_walk"
    ACCESSIBILITY = "accessibility"
    SHADOW_DOM = "shadow_dom"
    CONTAINER = "container"


STRATEGY_ORDER: list[LocatorStrategy] = list(LocatorStrategy)


def strategy_confidence(strategy: LocatorStrategy) -> float | None:
    """Return the ordinal confidence implied by *strategy*.

    Exact matches carry no confidence; each later strategy loses 0.1.
    """
    ordinal = STRATEGY_ORDER.index(strategy)
    if ordinal == 0:
        return None
    return round(1.0 - 0.1 * ordinal, 2)
