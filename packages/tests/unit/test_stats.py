"""Unit tests for homiekit._stats — $stats publishing and the LWT.

Test Techniques Used:
    - Specification-based Testing: Will config and attribute payloads
    - State Inspection: Published uptime values with a FakeClock
    - Fault Injection: Publish failures are logged, not raised
    - State Transition Testing: Periodic task start/stop
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from homiekit._mqtt import MockMqttClient, WillConfig
from homiekit._stats import StatsReporter, build_will_config
from homiekit.testing import FakeClock

DEVICE_TOPIC = "homie/dev"
UPTIME_TOPIC = "homie/dev/$stats/uptime"


def _reporter(
    mqtt: MockMqttClient,
    clock: FakeClock,
    interval: float = 60.0,
) -> StatsReporter:
    return StatsReporter(
        mqtt=mqtt,
        device_topic=DEVICE_TOPIC,
        interval=interval,
        clock=clock,
    )


class TestBuildWillConfig:
    """LWT for the device $state topic.

    Technique: Specification-based Testing.
    """

    def test_will_marks_device_lost(self) -> None:
        assert build_will_config(DEVICE_TOPIC) == WillConfig(
            topic="homie/dev/$state",
            payload="lost",
            qos=1,
            retain=True,
        )

    def test_will_qos_configurable(self) -> None:
        assert build_will_config(DEVICE_TOPIC, qos=0).qos == 0


class TestStatsAttributes:
    """$stats/interval payload formatting.

    Technique: Equivalence Partitioning.
    """

    @pytest.mark.parametrize(
        ("interval", "expected"),
        [(60.0, "60"), (0.5, "0.5"), (0, "0")],
    )
    def test_interval_payload(
        self,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
        interval: float,
        expected: str,
    ) -> None:
        reporter = _reporter(mock_mqtt, fake_clock, interval)
        assert reporter.attributes() == [("homie/dev/$stats/interval", expected)]


class TestPublishUptime:
    """Uptime publication.

    Technique: State Inspection.
    """

    async def test_publishes_whole_seconds_retained(
        self,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
    ) -> None:
        reporter = _reporter(mock_mqtt, fake_clock)
        fake_clock.advance(12.7)
        await reporter.publish_uptime()
        assert mock_mqtt.get_messages_for(UPTIME_TOPIC) == [("12", True, 1)]

    async def test_uptime_relative_to_creation(self, mock_mqtt: MockMqttClient) -> None:
        clock = FakeClock(1000.0)
        reporter = _reporter(mock_mqtt, clock)
        clock.advance(5)
        assert reporter.uptime == 5.0

    async def test_failure_logged_not_raised(
        self,
        fake_clock: FakeClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mqtt = MockMqttClient(fail_topics={UPTIME_TOPIC})
        reporter = _reporter(mqtt, fake_clock)
        with caplog.at_level(logging.ERROR, logger="homiekit._stats"):
            await reporter.publish_uptime()
        assert "Failed to publish uptime" in caplog.text


class TestStatsLoop:
    """Periodic uptime task.

    Technique: State Transition Testing.
    """

    async def test_disabled_when_interval_zero(
        self,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
    ) -> None:
        reporter = _reporter(mock_mqtt, fake_clock, interval=0)
        reporter.start()
        assert not reporter.running
        await reporter.stop()

    async def test_start_publishes_and_stop_cancels(
        self,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
    ) -> None:
        reporter = _reporter(mock_mqtt, fake_clock, interval=0.01)
        reporter.start()
        assert reporter.running
        await asyncio.sleep(0.05)
        await reporter.stop()
        assert not reporter.running
        assert len(mock_mqtt.get_messages_for(UPTIME_TOPIC)) >= 2

    async def test_start_twice_keeps_one_task(
        self,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
    ) -> None:
        reporter = _reporter(mock_mqtt, fake_clock, interval=60)
        reporter.start()
        task = reporter._task  # noqa: SLF001
        reporter.start()
        assert reporter._task is task  # noqa: SLF001
        await reporter.stop()

    async def test_stop_is_idempotent(
        self,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
    ) -> None:
        reporter = _reporter(mock_mqtt, fake_clock)
        await reporter.stop()
        await reporter.stop()
