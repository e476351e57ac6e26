"""Structured JSON log formatter and logging configuration.

Devices built on homiekit typically run unattended next to the broker,
with logs shipped to an aggregator.  :class:`JsonFormatter` emits one
JSON object per record on a single line (NDJSON) and stamps every
line with the ``service`` (device id) and firmware ``version`` so
several devices can share one log stream.

The library itself never configures logging; applications call
:func:`configure_logging` once at startup.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from homiekit._settings import LoggingSettings

_MEGABYTE = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CONTEXT_FIELDS = ("device", "topic", "phase")
"""Record attributes copied into the JSON line when set via ``extra=``."""


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Fields: ``timestamp`` (ISO 8601, UTC), ``level``, ``logger``,
    ``message``, ``service``, plus ``version``, the context fields
    (``device``, ``topic``, ``phase``), ``exception`` and ``stack_info``
    when present.

    Args:
        service: Name included in every log line (usually the device id).
        version: Firmware version.  Omitted from output when empty.
    """

    def __init__(self, *, service: str = "", version: str = "") -> None:
        super().__init__()
        self._static: dict[str, str] = {"service": service}
        if version:
            self._static["version"] = version

    def format(self, record: logging.LogRecord) -> str:
        """Format *record* as one JSON line.

        Tracebacks are escaped by ``json.dumps`` so the result never
        contains an embedded newline.
        """
        created = datetime.fromtimestamp(record.created, tz=UTC)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self._static,
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def _make_formatter(
    settings: LoggingSettings,
    service: str,
    version: str,
) -> logging.Formatter:
    if settings.format == "json":
        return JsonFormatter(service=service, version=version)
    return logging.Formatter(_TEXT_FORMAT)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Configure the root logger from *settings*.

    Replaces any existing root handlers with a stderr
    :class:`~logging.StreamHandler` and, when ``settings.file`` is set,
    a :class:`~logging.handlers.RotatingFileHandler` sized by
    ``settings.max_file_size_mb``.

    Args:
        settings: Logging configuration (level, format, file).
        service: Name passed to :class:`JsonFormatter`.
        version: Version passed to :class:`JsonFormatter`.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = _make_formatter(settings, service, version)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file is not None:
        handlers.append(
            RotatingFileHandler(
                settings.file,
                maxBytes=settings.max_file_size_mb * _MEGABYTE,
                backupCount=settings.backup_count,
            ),
        )
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(settings.level)
