"""Monotonic clock port and system adapter.

The device reports ``$stats/uptime`` as the time elapsed since it was
created.  Elapsed time is measured with ``time.monotonic()``, which is
immune to NTP and manual clock changes; only differences between two
``now()`` calls are meaningful.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic clock used for uptime measurement.

    Tests inject a deterministic fake clock.
    """

    def now(self) -> float:
        """Return monotonic time in seconds from an arbitrary epoch."""
        ...


class SystemClock:
    """Production clock wrapping ``time.monotonic()``."""

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()
