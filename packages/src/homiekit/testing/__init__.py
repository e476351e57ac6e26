"""Public test-support utilities for homiekit.

Re-exports test doubles and factories so that consumer test suites
can import everything from a single ``homiekit.testing`` namespace
instead of reaching into private modules.

Provided symbols:

- :class:`DeviceHarness` — a Device wired to test doubles.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`NullMqttClient` — silent no-op MQTT adapter.
- :class:`FakeClock` — deterministic clock for uptime tests.
- :func:`make_settings` — factory for ``HomieSettings`` without ``.env`` files.
"""

from homiekit._mqtt import MockMqttClient, NullMqttClient
from homiekit.testing._clock import FakeClock
from homiekit.testing._harness import DeviceHarness
from homiekit.testing._settings import make_settings

__all__ = [
    "DeviceHarness",
    "FakeClock",
    "MockMqttClient",
    "NullMqttClient",
    "make_settings",
]
