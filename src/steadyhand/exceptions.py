"""steadyhand exception hierarchy."""

from __future__ import annotations


class SteadyhandError(Exception):
    """Base exception for all steadyhand errors."""


class UnknownActionError(SteadyhandError):
    """Raised when an action name has no registered handler."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown action: {name}")


class InvalidParamsError(SteadyhandError):
    """Raised when action parameters fail validation."""

    def __init__(self, action: str, detail: str) -> None:
        self.action = action
        self.detail = detail
        super().__init__(f"Invalid parameters for {action}: {detail}")


class ElementNotFoundError(SteadyhandError):
    """Raised by handlers when a locator matches nothing on the page.

    Attributes:
        locator: Human-readable description of the locator that failed.
    """

    def __init__(self, locator: str) -> None:
        self.locator = locator
        super().__init__(f"Element not found: {locator}")


class TransientBrowserError(SteadyhandError):
    """Raised when a transient browser error persists after all retries.

    Attributes:
        attempts: Number of attempts made.
        last_error: Message of the final underlying error.
    """

    def __init__(self, operation: str, attempts: int, last_error: str) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


class NavigationError(SteadyhandError):
    """Raised when navigation fails with a non-retryable network error."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Navigation to {url} failed: {reason}")


class SessionNotStartedError(SteadyhandError):
    """Raised when a component needs a page but the browser session is not running."""

    def __init__(self) -> None:
        super().__init__("Browser session is not started")


class CaptchaError(SteadyhandError):
    """Raised for CAPTCHA configuration problems (e.g. no image to solve)."""
