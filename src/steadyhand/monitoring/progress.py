"""Progress notifier — one-way observability events for action execution.

Each event is a flat ``{action, phase, message, timestamp}`` record fanned out
to every registered sink.  Sinks never influence control flow: a failing
sink is logged and skipped.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    """Lifecycle phase of an action."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """Structured event emitted by the notifier."""

    action: str
    phase: Phase
    message: str = ""
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    data: dict[str, Any] = Field(default_factory=dict)

    def to_jsonl(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        return self.model_dump_json()


# ---------------------------------------------------------------------------
# Sink protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ProgressSink(Protocol):
    """Protocol for progress event consumers."""

    async def handle_event(self, event: ProgressEvent) -> None:
        """Process a single event."""
        ...


# ---------------------------------------------------------------------------
# Built-in sinks
# ---------------------------------------------------------------------------


class LoggingSink:
    """Emit events to the Python logger at DEBUG level."""

    def __init__(self, logger_name: str = "steadyhand.events") -> None:
        self._logger = logging.getLogger(logger_name)

    async def handle_event(self, event: ProgressEvent) -> None:
        """Log the event."""
        self._logger.debug(
            "[%s] %s: %s %s",
            event.action,
            event.phase.value,
            event.message,
            json.dumps(event.data, default=str)[:200] if event.data else "",
        )


class InMemorySink:
    """Collect events in a list — useful for testing."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    async def handle_event(self, event: ProgressEvent) -> None:
        """Append the event to the in-memory list."""
        self.events.append(event)

    def clear(self) -> None:
        """Clear all collected events."""
        self.events.clear()

    @property
    def count(self) -> int:
        """Return the number of collected events."""
        return len(self.events)

    def phases(self, action: str | None = None) -> list[Phase]:
        """Return the phases seen, optionally for one action only."""
        return [e.phase for e in self.events if action is None or e.action == action]


class JsonlSink:
    """Write events as JSONL lines to a file-like object.

    Works with ``sys.stdout``, ``sys.stderr``, or an open file handle.
    """

    def __init__(self, stream: Any) -> None:
        self._stream = stream

    async def handle_event(self, event: ProgressEvent) -> None:
        """Write one JSON line to the stream."""
        self._stream.write(event.to_jsonl() + "\n")
        if hasattr(self._stream, "flush"):
            self._stream.flush()


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class ProgressNotifier:
    """Fan-out of progress events to registered sinks."""

    def __init__(self, sinks: list[ProgressSink] | None = None) -> None:
        self._sinks: list[ProgressSink] = list(sinks or [])

    def add_sink(self, sink: ProgressSink) -> None:
        """Register a sink."""
        self._sinks.append(sink)

    def remove_sink(self, sink: ProgressSink) -> None:
        """Remove a previously registered sink."""
        self._sinks = [s for s in self._sinks if s is not sink]

    @property
    def sink_count(self) -> int:
        return len(self._sinks)

    async def notify(
        self,
        action: str,
        phase: Phase | str,
        message: str = "",
        **data: Any,
    ) -> None:
        """Emit one event to every sink.

        Args:
            action: Action name the event belongs to.
            phase: Lifecycle phase (``Phase`` enum or raw string).
            message: Short human-readable message.
            **data: Extra structured payload.
        """
        if isinstance(phase, str):
            try:
                phase = Phase(phase)
            except ValueError:
                phase = Phase.PROGRESS

        event = ProgressEvent(action=action, phase=phase, message=message, data=data)

        for sink in self._sinks:
            try:
                await sink.handle_event(event)
            except Exception as exc:
                logger.warning("Progress sink error (%s): %s", type(sink).__name__, exc)

    # Convenience wrappers

    async def start(self, action: str, message: str = "", **data: Any) -> None:
        await self.notify(action, Phase.STARTED, message or f"Starting {action}", **data)

    async def update(self, action: str, message: str, **data: Any) -> None:
        await self.notify(action, Phase.PROGRESS, message, **data)

    async def complete(self, action: str, message: str = "", **data: Any) -> None:
        await self.notify(action, Phase.COMPLETED, message or f"Completed {action}", **data)

    async def fail(self, action: str, message: str, **data: Any) -> None:
        await self.notify(action, Phase.ERROR, message, **data)
