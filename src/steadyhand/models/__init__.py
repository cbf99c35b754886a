"""Data models: locators, typed action params, results, CAPTCHA and extraction records."""

from steadyhand.models.locator import Locator, LocatorStrategy
from steadyhand.models.results import ActionMeta, ActionResult, ErrorKind, HealingRecord

__all__ = [
    "ActionMeta",
    "ActionResult",
    "ErrorKind",
    "HealingRecord",
    "Locator",
    "LocatorStrategy",
]
