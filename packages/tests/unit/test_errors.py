"""Unit tests for homiekit._errors — error kinds and reporting channel.

Test Techniques Used:
    - Specification-based Testing: Report fields and JSON schema
    - Decision Table: Exception type → error_type mapping
    - Fault Injection: Failing listeners must not propagate
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

import pytest

from homiekit._errors import (
    DEFAULT_ERROR_TYPES,
    CallbackFailure,
    DuplicateIdentifier,
    ErrorReport,
    ErrorReporter,
    HomieError,
    InvalidIdentifier,
    LifecycleConflict,
    TransportFailure,
    TypeMismatch,
    build_error_report,
)

FIXED_TIME = datetime(2026, 2, 14, 12, 34, 56, tzinfo=UTC)


def _fixed_clock() -> datetime:
    return FIXED_TIME


class TestExceptionHierarchy:
    """Every error kind is a HomieError and a matching builtin.

    Technique: Specification-based Testing.
    """

    @pytest.mark.parametrize(
        ("kind", "builtin"),
        [
            (InvalidIdentifier, ValueError),
            (DuplicateIdentifier, ValueError),
            (LifecycleConflict, RuntimeError),
            (TypeMismatch, TypeError),
            (TransportFailure, ConnectionError),
            (CallbackFailure, HomieError),
        ],
    )
    def test_kind_subclasses(self, kind: type[Exception], builtin: type) -> None:
        assert issubclass(kind, HomieError)
        assert issubclass(kind, builtin)


class TestBuildErrorReport:
    """build_error_report converts exceptions to reports.

    Technique: Decision Table.
    """

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (InvalidIdentifier("x"), "invalid_identifier"),
            (DuplicateIdentifier("x"), "duplicate_identifier"),
            (LifecycleConflict("x"), "lifecycle_conflict"),
            (TypeMismatch("x"), "type_mismatch"),
            (TransportFailure("x"), "transport_failure"),
            (CallbackFailure("x"), "callback_failure"),
            (KeyError("x"), "error"),
        ],
    )
    def test_error_type_mapping(self, error: Exception, expected: str) -> None:
        report = build_error_report(error)
        assert report.error_type == expected

    def test_custom_map_replaces_default(self) -> None:
        report = build_error_report(
            KeyError("missing"),
            error_type_map={KeyError: "lookup"},
        )
        assert report.error_type == "lookup"

    def test_fields(self) -> None:
        error = TransportFailure("broker gone")
        report = build_error_report(
            error,
            device="dev",
            details={"phase": "setup"},
            clock=_fixed_clock,
        )
        assert report.message == "broker gone"
        assert report.device == "dev"
        assert report.timestamp == "2026-02-14T12:34:56+00:00"
        assert report.details == {"phase": "setup"}
        assert report.error is error

    def test_details_default_to_empty_dict(self) -> None:
        assert build_error_report(TypeMismatch("x")).details == {}


class TestErrorReportJson:
    """Serialised report schema.

    Technique: Specification-based Testing.
    """

    def test_to_json_schema(self) -> None:
        report = build_error_report(
            LifecycleConflict("busy"),
            device="dev",
            clock=_fixed_clock,
        )
        data = json.loads(report.to_json())
        assert data == {
            "error_type": "lifecycle_conflict",
            "message": "busy",
            "device": "dev",
            "timestamp": "2026-02-14T12:34:56+00:00",
            "details": {},
        }

    def test_report_is_frozen(self) -> None:
        report = ErrorReport("error", "m", None, "t")
        with pytest.raises(AttributeError):
            report.message = "other"  # type: ignore[misc]


class TestErrorReporter:
    """Device-scoped error channel.

    Technique: State Inspection and Fault Injection.
    """

    async def test_report_keeps_last(self) -> None:
        reporter = ErrorReporter(device="dev", clock=_fixed_clock)
        assert reporter.last is None
        report = await reporter.report(TransportFailure("down"))
        assert reporter.last is report
        assert report.device == "dev"

    async def test_clear_forgets_last(self) -> None:
        reporter = ErrorReporter()
        await reporter.report(TransportFailure("down"))
        reporter.clear()
        assert reporter.last is None

    async def test_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        reporter = ErrorReporter(device="dev")
        with caplog.at_level(logging.WARNING, logger="homiekit._errors"):
            await reporter.report(TypeMismatch("bad value"))
        assert "bad value" in caplog.text
        assert "type_mismatch" in caplog.text

    async def test_notifies_sync_and_async_listeners(self) -> None:
        reporter = ErrorReporter()
        seen: list[str] = []

        @reporter.add_listener
        def sync_listener(report: ErrorReport) -> None:
            seen.append(f"sync:{report.error_type}")

        async def async_listener(report: ErrorReport) -> None:
            seen.append(f"async:{report.error_type}")

        reporter.add_listener(async_listener)
        await reporter.report(CallbackFailure("x"))
        assert seen == ["sync:callback_failure", "async:callback_failure"]

    async def test_failing_listener_does_not_propagate(self) -> None:
        reporter = ErrorReporter()
        seen: list[ErrorReport] = []

        def broken(_report: ErrorReport) -> None:
            msg = "listener bug"
            raise RuntimeError(msg)

        reporter.add_listener(broken)
        reporter.add_listener(seen.append)
        await reporter.report(TransportFailure("x"))
        assert len(seen) == 1

    async def test_remove_listener(self) -> None:
        reporter = ErrorReporter()
        seen: list[ErrorReport] = []
        reporter.add_listener(seen.append)
        reporter.remove_listener(seen.append)
        reporter.remove_listener(seen.append)
        await reporter.report(TransportFailure("x"))
        assert seen == []

    def test_default_map_is_a_copy(self) -> None:
        reporter = ErrorReporter()
        reporter.error_type_map[KeyError] = "lookup"
        assert KeyError not in DEFAULT_ERROR_TYPES
