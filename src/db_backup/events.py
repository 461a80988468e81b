"""Backup lifecycle, message, and progress events.

The core emits events to an ``EventBus``; observers (loggers, progress
bars, tests) subscribe to it.  The core has no opinion on rendering.

Event kinds:

- ``BatchStarted`` / ``BatchFinished`` / ``BatchFailed`` -- one batch run.
- ``TargetStarted`` / ``TargetFinished`` / ``TargetFailed`` -- one target.
- ``MessageEvent`` -- one classified line of dump output.
- ``ProgressEvent`` -- table-level progress for one target.

Usage:
    from db_backup.events import EventBus, LoggingSink, ProgressEvent

    bus = EventBus()
    bus.subscribe(LoggingSink())
    bus.subscribe(lambda event: print(event))
"""

import logging
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt

from db_backup.backup.models import BackupResult

logger = logging.getLogger(__name__)


class BackupEvent(BaseModel):
    """Base class for all events."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


# ============================================================================
# Lifecycle Events
# ============================================================================


class BatchStarted(BackupEvent):
    targets: list[str]
    options: dict[str, Any] = Field(default_factory=dict)


class BatchFinished(BackupEvent):
    targets: list[str]
    duration: float                     # seconds
    results: list[BackupResult]


class BatchFailed(BackupEvent):
    targets: list[str]
    duration: float
    error: BaseException


class TargetStarted(BackupEvent):
    target: str
    config: dict[str, Any] = Field(default_factory=dict)
    backup_file: str


class TargetFinished(BackupEvent):
    target: str
    backup_file: str | None = None
    duration: float
    result: BackupResult


class TargetFailed(BackupEvent):
    target: str
    duration: float
    error: BaseException


# ============================================================================
# Output Events
# ============================================================================


MessageLevel = Literal["info", "warning", "error"]


class MessageEvent(BackupEvent):
    """One line of dump output with its level."""

    target: str
    level: MessageLevel
    message: str


class ProgressEvent(BackupEvent):
    """Progress through the target's tables.

    ``total`` is ``None`` when the table count could not be determined.
    """

    target: str
    completed: NonNegativeInt
    total: NonNegativeInt | None = None
    subject: str | None = None

    @property
    def percent(self) -> float | None:
        """Completion percentage, or ``None`` if the total is unknown or zero."""
        if not self.total:
            return None
        return min(100.0, self.completed / self.total * 100)


def classify_line(line: str) -> MessageLevel:
    """Level for one line of dump output.

    Checks for ``error:`` first, then ``warning:``; anything else is info.
    Matching is case-sensitive.
    """
    if "error:" in line:
        return "error"
    if "warning:" in line:
        return "warning"
    return "info"


# ============================================================================
# Event Bus
# ============================================================================


EventHandler = Callable[[BackupEvent], None]


class EventBus:
    """Synchronous fan-out of events to subscribed handlers.

    Handlers run in subscription order on the emitting task.  A handler
    that raises propagates to the emitter.
    """

    def __init__(self, handlers: list[EventHandler] | None = None) -> None:
        self._handlers: list[EventHandler] = list(handlers or [])

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Add ``handler`` and return a function that removes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: BackupEvent) -> None:
        for handler in list(self._handlers):
            handler(event)


_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


class LoggingSink:
    """Event handler that writes events to ``logging``.

    Dump output lines keep their classified level; lifecycle events are
    logged at INFO, progress at DEBUG.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def __call__(self, event: BackupEvent) -> None:
        if isinstance(event, MessageEvent):
            self._log.log(_LEVELS[event.level], "[%s] %s", event.target, event.message)
        elif isinstance(event, ProgressEvent):
            self._log.debug(
                "[%s] progress %s/%s %s",
                event.target,
                event.completed,
                event.total if event.total is not None else "?",
                event.subject or "",
            )
        elif isinstance(event, BatchStarted):
            self._log.info("Starting backups for %d target(s): %s", len(event.targets), ", ".join(event.targets))
        elif isinstance(event, BatchFinished):
            failed = sum(1 for r in event.results if not r.success)
            self._log.info("All backups completed in %.2fs (%d failed)", event.duration, failed)
        elif isinstance(event, TargetStarted):
            self._log.info("[%s] Starting backup to %s", event.target, event.backup_file)
        elif isinstance(event, TargetFinished):
            if event.result.success:
                self._log.info("[%s] Backup completed in %.2fs", event.target, event.duration)
            else:
                self._log.error("[%s] Backup failed: %s", event.target, event.result.error)
        elif isinstance(event, (TargetFailed, BatchFailed)):
            name = getattr(event, "target", "batch")
            self._log.error("[%s] Backup raised: %r", name, event.error)
