"""Observability: the one-way progress event stream.

Usage::

    from steadyhand.monitoring import LoggingSink, ProgressNotifier

    notifier = ProgressNotifier([LoggingSink()])
    await notifier.start("navigate", url="https://example.com")
"""

from steadyhand.monitoring.progress import (
    InMemorySink,
    JsonlSink,
    LoggingSink,
    Phase,
    ProgressEvent,
    ProgressNotifier,
    ProgressSink,
)

__all__ = [
    "InMemorySink",
    "JsonlSink",
    "LoggingSink",
    "Phase",
    "ProgressEvent",
    "ProgressNotifier",
    "ProgressSink",
]
