"""Tests for events, line classification, the event bus and the logging sink."""

import logging

import pytest
from pydantic import ValidationError

from db_backup.backup.models import BackupResult
from db_backup.errors import DumpFailedError
from db_backup.events import (
    BatchFinished,
    BatchStarted,
    EventBus,
    LoggingSink,
    MessageEvent,
    ProgressEvent,
    TargetFinished,
    TargetStarted,
    classify_line,
)


class TestClassifyLine:
    @pytest.mark.parametrize(
        ("line", "level"),
        [
            ('pg_dump: error: connection to server failed', "error"),
            ("pg_dump: warning: there are circular foreign-key constraints", "warning"),
            ("pg_dump: dumping contents of table \"public.users\"", "info"),
            ("", "info"),
            # error wins when both markers appear
            ("warning: then error: both", "error"),
            # case-sensitive
            ("pg_dump: ERROR: shouting", "info"),
            ("Warning: capitalised", "info"),
        ],
    )
    def test_classify(self, line, level):
        assert classify_line(line) == level


class TestProgressEvent:
    def test_percent(self):
        assert ProgressEvent(target="t", completed=1, total=4).percent == 25.0

    def test_percent_unknown_total(self):
        assert ProgressEvent(target="t", completed=3).percent is None

    def test_percent_zero_total(self):
        assert ProgressEvent(target="t", completed=0, total=0).percent is None

    def test_percent_capped(self):
        assert ProgressEvent(target="t", completed=5, total=4).percent == 100.0

    def test_negative_rejected(self):
        with pytest.raises(ValidationError):
            ProgressEvent(target="t", completed=-1, total=3)

    def test_frozen(self):
        event = ProgressEvent(target="t", completed=1, total=2)
        with pytest.raises(ValidationError):
            event.completed = 2


class TestEventBus:
    def test_fan_out_in_subscription_order(self):
        seen = []
        bus = EventBus()
        bus.subscribe(lambda e: seen.append(("first", e)))
        bus.subscribe(lambda e: seen.append(("second", e)))

        event = MessageEvent(target="t", level="info", message="hi")
        bus.emit(event)

        assert seen == [("first", event), ("second", event)]

    def test_unsubscribe(self):
        seen = []
        bus = EventBus()
        unsubscribe = bus.subscribe(seen.append)
        unsubscribe()
        unsubscribe()  # second call is a no-op

        bus.emit(MessageEvent(target="t", level="info", message="hi"))

        assert seen == []

    def test_handler_errors_propagate(self):
        def boom(event):
            raise RuntimeError("handler failed")

        bus = EventBus([boom])
        with pytest.raises(RuntimeError, match="handler failed"):
            bus.emit(MessageEvent(target="t", level="info", message="hi"))

    def test_no_handlers(self):
        EventBus().emit(MessageEvent(target="t", level="info", message="hi"))


class TestLoggingSink:
    @pytest.fixture
    def sink(self):
        return LoggingSink(logging.getLogger("db_backup.test_sink"))

    def test_message_levels(self, sink, caplog):
        caplog.set_level(logging.DEBUG, logger="db_backup.test_sink")

        sink(MessageEvent(target="main", level="info", message="plain"))
        sink(MessageEvent(target="main", level="warning", message="careful"))
        sink(MessageEvent(target="main", level="error", message="broken"))

        levels = [(r.levelno, r.getMessage()) for r in caplog.records]
        assert levels == [
            (logging.INFO, "[main] plain"),
            (logging.WARNING, "[main] careful"),
            (logging.ERROR, "[main] broken"),
        ]

    def test_progress_logged_at_debug(self, sink, caplog):
        caplog.set_level(logging.DEBUG, logger="db_backup.test_sink")
        sink(ProgressEvent(target="main", completed=1, total=None, subject="users"))
        [record] = caplog.records
        assert record.levelno == logging.DEBUG
        assert "1/?" in record.getMessage()

    def test_lifecycle(self, sink, caplog):
        caplog.set_level(logging.INFO, logger="db_backup.test_sink")
        ok = BackupResult.ok("main", "/tmp/main.db")
        failed = BackupResult.failed("other", DumpFailedError(1))

        sink(BatchStarted(targets=["main", "other"]))
        sink(TargetStarted(target="main", backup_file="/tmp/main.db"))
        sink(TargetFinished(target="main", backup_file="/tmp/main.db", duration=1.0, result=ok))
        sink(TargetFinished(target="other", duration=1.0, result=failed))
        sink(BatchFinished(targets=["main", "other"], duration=2.0, results=[ok, failed]))

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0] == "Starting backups for 2 target(s): main, other"
        assert "Starting backup to /tmp/main.db" in messages[1]
        assert "Backup completed" in messages[2]
        assert "pg_dump failed with exit status 1" in messages[3]
        assert caplog.records[3].levelno == logging.ERROR
        assert "(1 failed)" in messages[4]
