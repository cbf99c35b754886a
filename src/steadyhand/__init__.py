"""steadyhand — adaptive execution and recovery layer for browser automation agents."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("steadyhand")
except Exception:
    __version__ = "0.0.0"
