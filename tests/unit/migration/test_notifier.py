"""
Unit tests for notifiers.
"""

import logging

import pytest

from shadowmigrate.migration import (
    CallbackNotifier,
    ErrorSeverity,
    LoggingNotifier,
    Notification,
    Notifier,
)


def notification(severity: ErrorSeverity = ErrorSeverity.INFO) -> Notification:
    return Notification(
        severity=severity,
        subject="Migration products-v2 completed",
        message="950 of 1000 records migrated",
        details={"runId": "run-1"},
    )


class TestNotification:
    """Tests for the Notification value."""

    def test_to_dict(self) -> None:
        data = notification(ErrorSeverity.CRITICAL).to_dict()

        assert data["severity"] == "critical"
        assert data["details"] == {"runId": "run-1"}
        assert "timestamp" in data


class TestLoggingNotifier:
    """Tests for LoggingNotifier."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(LoggingNotifier(), Notifier)

    async def test_logs_at_severity_level(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="shadowmigrate.notifications")

        await LoggingNotifier().notify(notification(ErrorSeverity.CRITICAL))

        record = caplog.records[-1]
        assert record.levelno == logging.CRITICAL
        assert record.getMessage() == (
            "Migration products-v2 completed: 950 of 1000 records migrated"
        )


class TestCallbackNotifier:
    """Tests for CallbackNotifier."""

    async def test_general_then_severity_callbacks(self) -> None:
        notifier = CallbackNotifier()
        calls: list[str] = []

        async def general(n: Notification) -> None:
            calls.append("general")

        async def critical(n: Notification) -> None:
            calls.append("critical")

        notifier.register_for_severity(ErrorSeverity.CRITICAL, critical)
        notifier.register(general)

        await notifier.notify(notification(ErrorSeverity.CRITICAL))
        await notifier.notify(notification(ErrorSeverity.INFO))

        assert calls == ["general", "critical", "general"]

    async def test_failing_callback_does_not_stop_others(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        notifier = CallbackNotifier()
        received: list[Notification] = []

        async def explode(n: Notification) -> None:
            raise RuntimeError("pager offline")

        async def record(n: Notification) -> None:
            received.append(n)

        notifier.register(explode)
        notifier.register(record)

        await notifier.notify(notification())

        assert len(received) == 1
        assert "explode" in caplog.text
