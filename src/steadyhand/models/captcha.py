"""CAPTCHA solving state machine and session models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from steadyhand.models.locator import Locator


class CaptchaState(str, Enum):
    """States of one OCR solving session."""

    ATTEMPTING = "ATTEMPTING"
    VALIDATING = "VALIDATING"
    COMMITTING = "COMMITTING"
    REFRESHING = "REFRESHING"
    SOLVED = "SOLVED"
    EXHAUSTED = "EXHAUSTED"


TERMINAL_CAPTCHA_STATES = {CaptchaState.SOLVED, CaptchaState.EXHAUSTED}

# EXHAUSTED is reachable from any non-terminal state (retry bound or timeout)
CAPTCHA_TRANSITIONS: dict[CaptchaState, list[CaptchaState]] = {
    CaptchaState.ATTEMPTING: [CaptchaState.VALIDATING, CaptchaState.REFRESHING],
    CaptchaState.VALIDATING: [CaptchaState.COMMITTING, CaptchaState.REFRESHING],
    CaptchaState.COMMITTING: [CaptchaState.SOLVED],
    CaptchaState.REFRESHING: [CaptchaState.ATTEMPTING],
}


class ManagedProvider(str, Enum):
    """Third-party widgets that populate a hidden response token themselves."""

    TURNSTILE = "turnstile"
    RECAPTCHA = "recaptcha"
    HCAPTCHA = "hcaptcha"


class CaptchaConfig(BaseModel):
    """Resolved configuration for one ``solve`` invocation."""

    image: Locator | None = None
    input: Locator | None = None
    refresh: Locator | None = None
    expected_length: int | None = Field(default=None, ge=1)
    allowed_chars: str | None = None
    max_retries: int = Field(default=10, ge=1)
    timeout_seconds: float = 60.0
    min_confidence: float = 75.0
    verify: bool = True
    auto_retry: bool = True
    auto_detect: bool = True
    lang: str = "eng"
    turbo: bool = False


@dataclass
class CaptchaAttempt:
    """One OCR recognition and its gate verdict."""

    index: int
    text: str = ""
    raw_text: str = ""
    confidence: float = 0.0
    committed: bool = False
    rejected_reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "text": self.text,
            "raw_text": self.raw_text,
            "confidence": self.confidence,
            "committed": self.committed,
            "rejected_reason": self.rejected_reason,
        }


class InvalidCaptchaTransition(ValueError):
    """Raised on a state change the transition table does not allow."""


@dataclass
class CaptchaSession:
    """Tracks attempts for a single ``solve`` call."""

    config: CaptchaConfig
    state: CaptchaState = CaptchaState.ATTEMPTING
    attempts: list[CaptchaAttempt] = field(default_factory=list)
    refreshes: int = 0
    history: list[CaptchaState] = field(default_factory=lambda: [CaptchaState.ATTEMPTING])

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_CAPTCHA_STATES

    @property
    def current(self) -> CaptchaAttempt | None:
        return self.attempts[-1] if self.attempts else None

    @property
    def retries_left(self) -> int:
        return self.config.max_retries - len(self.attempts)

    def transition(self, new_state: CaptchaState) -> None:
        """Move to *new_state*, enforcing ``CAPTCHA_TRANSITIONS``."""
        if self.is_terminal:
            raise InvalidCaptchaTransition(f"session already ended in {self.state.value}")
        allowed = CAPTCHA_TRANSITIONS.get(self.state, [])
        if new_state is not CaptchaState.EXHAUSTED and new_state not in allowed:
            raise InvalidCaptchaTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def new_attempt(self) -> CaptchaAttempt:
        attempt = CaptchaAttempt(index=len(self.attempts) + 1)
        self.attempts.append(attempt)
        return attempt


class CaptchaOutcome(BaseModel):
    """Final result of a solve call (OCR or managed widget)."""

    success: bool
    text: str | None = None
    raw_text: str | None = None
    confidence: float | None = None
    attempts: int = 0
    refreshes: int = 0
    error: str | None = None
    provider: str | None = None
    token: str | None = None
    polls: int | None = None
    history: list[dict[str, Any]] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
