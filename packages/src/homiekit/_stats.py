"""Device statistics and Last-Will integration.

Topic layout::

    {root}/{device}/$stats/interval   ← seconds between reports (retained)
    {root}/{device}/$stats/uptime     ← seconds since creation (retained)
    {root}/{device}/$state            ← "lost", published by the broker as LWT

LWT integration:

- The broker publishes ``"lost"`` to ``$state`` if the client
  disconnects without a clean shutdown (crash, network loss).
- :func:`build_will_config` creates a :class:`WillConfig` for this
  topic; :class:`~homiekit.Device` passes it to the default
  :class:`~homiekit.MqttClient`.

Publication behaviour:

- **Retained** — statistics are last-known state.
- **Fire-and-forget** — uptime publication failures are logged, never
  propagated; a flaky broker must not kill the reporting loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from homiekit._clock import ClockPort
from homiekit._mqtt import MqttPort, WillConfig
from homiekit._topics import join_topic

logger = logging.getLogger(__name__)


def build_will_config(device_topic: str, qos: int = 1) -> WillConfig:
    """Create the LWT for a device: ``{device_topic}/$state = lost``.

    Parameters
    ----------
    device_topic:
        ``{root}/{device}`` of the device (e.g. ``"homie/my-device"``).
    qos:
        QoS of the will message; the device passes its configured QoS.

    Returns
    -------
    WillConfig
        Retained will message.
    """
    return WillConfig(
        topic=join_topic(device_topic, "$state"),
        payload="lost",
        qos=qos,
        retain=True,
    )


@dataclass
class StatsReporter:
    """Publishes ``$stats/interval`` and periodic ``$stats/uptime``.

    Parameters
    ----------
    mqtt:
        Transport used for publishing.
    device_topic:
        ``{root}/{device}``.
    interval:
        Seconds between uptime reports; ``0`` disables the loop.
    clock:
        Monotonic clock for uptime measurement.
    qos:
        QoS for every publish.
    """

    mqtt: MqttPort
    device_topic: str
    interval: float
    clock: ClockPort
    qos: int = 1
    _start_time: float = field(init=False, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        """Capture the start time for uptime calculation."""
        self._start_time = self.clock.now()

    @property
    def uptime(self) -> float:
        """Seconds since the reporter was created."""
        return self.clock.now() - self._start_time

    @property
    def running(self) -> bool:
        """True while the periodic uptime task is active."""
        return self._task is not None and not self._task.done()

    def attributes(self) -> list[tuple[str, str]]:
        """Static statistics attributes, published during setup."""
        topic = join_topic(self.device_topic, "$stats/interval")
        return [(topic, f"{self.interval:g}")]

    async def publish_uptime(self) -> None:
        """Publish the current uptime in whole seconds."""
        topic = join_topic(self.device_topic, "$stats/uptime")
        try:
            await self.mqtt.publish(
                topic,
                str(int(self.uptime)),
                retain=True,
                qos=self.qos,
            )
        except Exception:
            logger.exception("Failed to publish uptime to %s", topic)

    def start(self) -> None:
        """Start the periodic uptime task (no-op when disabled or running)."""
        if self.interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Cancel the periodic task.  Idempotent."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        while True:
            await self.publish_uptime()
            await asyncio.sleep(self.interval)
