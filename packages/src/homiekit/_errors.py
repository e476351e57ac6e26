"""Error kinds and the device error-reporting channel.

Synchronous errors (bad ids, duplicate ids, lifecycle misuse, value
type mismatches) are raised to the caller.  Errors that happen inside
a background lifecycle sequence or inside an application set-callback
cannot be raised to anyone, so they are *reported* instead:

- logged at WARNING,
- kept as the device's most recent :class:`ErrorReport`,
- fanned out to every registered listener.

Report schema (``ErrorReport.to_json()``)::

    {
        "error_type": "transport_failure",
        "message": "Human-readable error description",
        "device": "my-device",
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {"phase": "setup"}
    }

Listeners are fire-and-forget: a failing listener is logged, never
propagated, so a broken observer cannot stall the lifecycle.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class HomieError(Exception):
    """Base class for every error raised by homiekit."""


class InvalidIdentifier(HomieError, ValueError):
    """A device, node or property id violates the topic ID grammar."""


class DuplicateIdentifier(HomieError, ValueError):
    """A node or property id is already taken within its parent."""


class LifecycleConflict(HomieError, RuntimeError):
    """A call is not valid in the device's current lifecycle state."""


class TypeMismatch(HomieError, TypeError):
    """A value does not match the property's declared data type."""


class TransportFailure(HomieError, ConnectionError):
    """The transport failed to connect, publish or subscribe."""


class CallbackFailure(HomieError):
    """An application set-callback raised while handling a message."""


DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    InvalidIdentifier: "invalid_identifier",
    DuplicateIdentifier: "duplicate_identifier",
    LifecycleConflict: "lifecycle_conflict",
    TypeMismatch: "type_mismatch",
    TransportFailure: "transport_failure",
    CallbackFailure: "callback_failure",
}

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorReport:
    """Immutable structured error report.

    ``error`` carries the original exception for in-process listeners;
    it is left out of the JSON form.
    """

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)
    error: Exception | None = field(default=None, compare=False, repr=False)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(
            {
                "error_type": self.error_type,
                "message": self.message,
                "device": self.device,
                "timestamp": self.timestamp,
                "details": self.details,
            },
            default=str,
        )


ErrorListener = Callable[[ErrorReport], Awaitable[None] | None]
"""Receives every report; may be a plain or an async callable."""

# ---------------------------------------------------------------------------
# Report builder
# ---------------------------------------------------------------------------


def build_error_report(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorReport:
    """Convert an exception into a structured :class:`ErrorReport`.

    Looks up the exact class of the exception in *error_type_map*
    (defaults to :data:`DEFAULT_ERROR_TYPES`); subclasses are not
    matched and fall back to ``"error"``.

    Args:
        error: The exception to convert.
        error_type_map: Mapping from exception types to machine-readable
            ``error_type`` strings.
        device: Optional device id to include in the report.
        details: Optional additional context.
        clock: Optional callable returning a :class:`~datetime.datetime`.
            Defaults to ``datetime.now(UTC)``.
    """
    resolved_map = DEFAULT_ERROR_TYPES if error_type_map is None else error_type_map
    error_type = resolved_map.get(type(error), "error")
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorReport(
        error_type=error_type,
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details=details or {},
        error=error,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorReporter:
    """Error channel owned by one device.

    Args:
        device: Device id stamped on every report.
        error_type_map: Mapping from exception types to type strings.
        clock: Optional wall-clock callable for deterministic tests.
    """

    device: str | None = None
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(DEFAULT_ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)
    _listeners: list[ErrorListener] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _last: ErrorReport | None = field(default=None, init=False, repr=False)

    @property
    def last(self) -> ErrorReport | None:
        """The most recent report, or None."""
        return self._last

    def add_listener(self, listener: ErrorListener) -> ErrorListener:
        """Register *listener*; usable as a decorator."""
        self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: ErrorListener) -> None:
        """Unregister *listener*, if present."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self) -> None:
        """Forget the most recent report."""
        self._last = None

    async def report(
        self,
        error: Exception,
        *,
        details: dict[str, object] | None = None,
    ) -> ErrorReport:
        """Build, log, remember and fan out a report for *error*."""
        report = build_error_report(
            error,
            error_type_map=self.error_type_map,
            device=self.device,
            details=details,
            clock=self.clock,
        )
        self._last = report
        logger.warning(
            "Reporting error: %s (type=%s, device=%s)",
            report.message,
            report.error_type,
            self.device,
            extra={"device": self.device},
        )
        for listener in list(self._listeners):
            await self._safe_notify(listener, report)
        return report

    async def _safe_notify(self, listener: ErrorListener, report: ErrorReport) -> None:
        """Invoke one listener, swallowing any exception."""
        try:
            result = listener(report)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Error listener %r failed", listener)
