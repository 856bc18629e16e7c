"""
Operator notifications for terminal run outcomes.

The orchestrator sends one Notification per run when it reaches a terminal
state:

- INFO: COMPLETED
- ERROR: ROLLED_BACK, or a failure before the backup completed
- CRITICAL: ROLLBACK_FAILED; details carry the backup location

Notifier failures are logged and never change a run's outcome.

Example:
    >>> notifier = CallbackNotifier()
    >>> notifier.register_for_severity(ErrorSeverity.CRITICAL, page_on_call)
    >>> orchestrator = MigrationOrchestrator(database, definition, notifier=notifier)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from shadowmigrate.migration.exceptions import ErrorSeverity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """
    A message about a run's outcome.

    Attributes:
        severity: How urgently an operator should look
        subject: One-line summary
        message: Longer human-readable description
        details: Structured context (run id, phase, backup location, ...)
        timestamp: When the notification was created
    """

    severity: ErrorSeverity
    subject: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "subject": self.subject,
            "message": self.message,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
        }


@runtime_checkable
class Notifier(Protocol):
    """Anything that can deliver a Notification."""

    async def notify(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Writes notifications to the log at their severity's level."""

    def __init__(self, logger_name: str = "shadowmigrate.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    async def notify(self, notification: Notification) -> None:
        self._logger.log(
            notification.severity.log_level,
            "%s: %s",
            notification.subject,
            notification.message,
            extra={"notification": notification.to_dict()},
        )


NotificationCallback = Callable[[Notification], Awaitable[None]]
"""Async callback invoked with each notification."""


class CallbackNotifier:
    """
    Registry of async callbacks, optionally filtered by severity.

    Callbacks run in registration order: general callbacks first, then the
    ones registered for the notification's severity. An error in one
    callback is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._callbacks: list[NotificationCallback] = []
        self._severity_callbacks: dict[ErrorSeverity, list[NotificationCallback]] = {}

    def register(self, callback: NotificationCallback) -> None:
        self._callbacks.append(callback)

    def register_for_severity(
        self,
        severity: ErrorSeverity,
        callback: NotificationCallback,
    ) -> None:
        self._severity_callbacks.setdefault(severity, []).append(callback)

    async def notify(self, notification: Notification) -> None:
        callbacks = [
            *self._callbacks,
            *self._severity_callbacks.get(notification.severity, []),
        ]
        for callback in callbacks:
            try:
                await callback(notification)
            except Exception:
                logger.exception(
                    "Notification callback %s failed for %r",
                    getattr(callback, "__name__", repr(callback)),
                    notification.subject,
                )


__all__ = [
    "CallbackNotifier",
    "LoggingNotifier",
    "Notification",
    "NotificationCallback",
    "Notifier",
]
