"""Typed parameter records for every dispatchable action.

Each action name maps to one ``ActionParams`` subclass; the dispatcher
validates the caller's raw parameter dict against it before the handler runs.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from steadyhand.models.locator import Locator

WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]


class ActionParams(BaseModel):
    """Base class for action parameters."""

    model_config = ConfigDict(extra="forbid")

    @property
    def target(self) -> Locator | None:
        """The healable locator carried by these params, if any."""
        return getattr(self, "locator", None)

    def with_locator(self, locator: Locator) -> "ActionParams":
        """Return a copy with *locator* substituted for the original."""
        return self.model_copy(update={"locator": locator})


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


class NavigateParams(ActionParams):
    url: str
    wait_until: WaitUntil | None = None
    timeout_ms: int | None = None

    @field_validator("url")
    @classmethod
    def _require_scheme(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url must not be empty")
        if "://" not in v and not v.startswith(("about:", "data:")):
            v = f"https://{v}"
        return v


class ReloadParams(ActionParams):
    wait_until: WaitUntil | None = None
    timeout_ms: int | None = None


# ---------------------------------------------------------------------------
# Element interaction
# ---------------------------------------------------------------------------


class ClickParams(ActionParams):
    locator: Locator
    click_count: int = Field(default=1, ge=1, le=3)
    button: Literal["left", "right", "middle"] = "left"
    delay_ms: int = 0


class TypeParams(ActionParams):
    locator: Locator
    text: str
    clear: bool = True
    delay_ms: int = Field(default=0, ge=0)


class FindElementParams(ActionParams):
    locator: Locator


class WaitParams(ActionParams):
    """Wait for an element state, or sleep for ``timeout_ms`` when no locator is given."""

    locator: Locator | None = None
    state: Literal["attached", "detached", "visible", "hidden"] = "visible"
    timeout_ms: int = Field(default=5_000, ge=0)


class PressKeyParams(ActionParams):
    key: str
    locator: Locator | None = None


class GetContentParams(ActionParams):
    format: Literal["text", "html"] = "text"
    locator: Locator | None = None
    max_chars: int | None = Field(default=None, ge=1)


class EvaluateParams(ActionParams):
    script: str
    arg: Any = None


class CookiesParams(ActionParams):
    op: Literal["get", "set", "delete", "clear"] = "get"
    cookies: list[dict[str, Any]] = Field(default_factory=list)
    name: str | None = None
    urls: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# CAPTCHA and extraction
# ---------------------------------------------------------------------------


class SolveCaptchaParams(ActionParams):
    """Parameters for ``solve_captcha``; ``locator`` is the CAPTCHA input field."""

    mode: Literal["auto", "ocr", "managed"] = "auto"
    image: Locator | None = None
    locator: Locator | None = None
    refresh: Locator | None = None
    expected_length: int | None = Field(default=None, ge=1)
    allowed_chars: str | None = None
    max_retries: int | None = Field(default=None, ge=1)
    timeout_seconds: float | None = Field(default=None, gt=0)
    min_confidence: float | None = Field(default=None, ge=0, le=100)
    verify: bool = True
    auto_retry: bool = True
    auto_detect: bool = True
    lang: str | None = None
    turbo: bool = False


class ExtractStreamsParams(ActionParams):
    scan_frames: bool = True
    max_frames: int | None = Field(default=None, ge=0)
    capture_network: bool | None = None
    capture_window_ms: int | None = Field(default=None, ge=0)
