"""Result envelope returned by every action."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, model_validator


class ErrorKind(str, Enum):
    """Classification of a failed action."""

    UNKNOWN_ACTION = "unknown_action"
    INVALID_PARAMS = "invalid_params"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    FAILED = "failed"


class HealingRecord(BaseModel):
    """What the dispatcher substituted when it healed a broken locator."""

    original: str
    healed: str
    strategy: str
    confidence: float | None = None


class ActionMeta(BaseModel):
    duration_ms: int = 0
    healed: bool = False


class ActionResult(BaseModel):
    """Structured outcome of one action.

    ``success=False`` always carries a non-empty ``error``.  ``healing`` is
    only set when a substitution occurred.
    """

    success: bool
    payload: dict[str, Any] | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    healing: HealingRecord | None = None
    meta: ActionMeta | None = None

    @model_validator(mode="after")
    def _failure_has_error(self) -> "ActionResult":
        if not self.success:
            if not self.error:
                self.error = "Action failed"
            if self.error_kind is None:
                self.error_kind = ErrorKind.FAILED
        return self

    @classmethod
    def ok(cls, **payload: Any) -> "ActionResult":
        """Build a successful result from keyword payload."""
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, error: str, kind: ErrorKind = ErrorKind.FAILED, **payload: Any) -> "ActionResult":
        """Build a failed result."""
        return cls(success=False, error=error, error_kind=kind, payload=payload or None)

    @property
    def not_found(self) -> bool:
        return not self.success and self.error_kind == ErrorKind.NOT_FOUND

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable dict without empty fields."""
        return self.model_dump(mode="json", exclude_none=True)
