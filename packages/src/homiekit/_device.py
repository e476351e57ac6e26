"""The device — root of the node/property tree and owner of the lifecycle.

Lifecycle::

    INIT ──setup()──▶ CONNECTING ──▶ READY ──shutdown()──▶ DISCONNECTING ──▶ INIT
      ▲                    │ failure
      └────────────────────┘

``setup()`` and ``shutdown()`` never block: they flip the state under
the lock, schedule the sequence as an asyncio task and return that
task.  While a sequence is in flight every other lifecycle call is
rejected with :class:`~homiekit.LifecycleConflict`, so at most one
sequence runs per device.  The state is the only data shared between
the lifecycle task, inbound dispatch and application threads; it is
guarded by a single :class:`threading.Lock`.

The node/property tree can only be changed in ``INIT``.  Once a
sequence starts the tree is frozen, so inbound dispatch reads it
without locking.

Setup sequence (all retained)::

    connect
    $homie, $name, $state=init, $nodes, $implementation, $fw/*, $stats/interval
    per node:      $name, $type, $properties
      per property: $name, $unit, $datatype, $settable, [$format], [cached value]
    subscribe   {node}/{property}/set for every settable property
    values sent while connecting
    $state=ready

Shutdown sequence::

    $state=disconnected, unsubscribe every set topic, disconnect
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Awaitable, Iterator, Mapping
from enum import StrEnum
from types import MappingProxyType, TracebackType
from typing import TYPE_CHECKING, Self

from homiekit._clock import ClockPort, SystemClock
from homiekit._dispatch import SetDispatcher
from homiekit._errors import (
    DuplicateIdentifier,
    ErrorReport,
    ErrorReporter,
    LifecycleConflict,
    TransportFailure,
)
from homiekit._mqtt import MqttClient, MqttPort
from homiekit._node import Node
from homiekit._stats import StatsReporter, build_will_config
from homiekit._topics import join_topic, validate_topic_id

if TYPE_CHECKING:
    from homiekit._property import Property
    from homiekit._settings import HomieSettings

logger = logging.getLogger(__name__)

CONVENTION_VERSION = "3.0.1"
"""Published as ``$homie``."""


class DeviceState(StrEnum):
    """Lifecycle states of a :class:`Device`."""

    INIT = "init"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTING = "disconnecting"


_IN_FLIGHT = frozenset({DeviceState.CONNECTING, DeviceState.DISCONNECTING})


class Device:
    """A Homie device published over MQTT.

    Usage::

        device = Device(settings)
        node = device.create_node("thermostat", "controller")
        target = node.get_property("target")
        target.datatype = DataType.FLOAT
        target.unit = "°C"

        @target.make_settable
        async def on_target(prop: Property, value: str) -> None:
            await prop.send(float(value))

        async with device:
            await node.get_property("target").send(21.5)
            ...

    Args:
        settings: Device, MQTT and logging configuration.
        mqtt: Transport adapter.  Defaults to an :class:`MqttClient`
            for ``settings.mqtt`` with ``$state = lost`` as LWT.
        clock: Monotonic clock for ``$stats/uptime``.
        error_type_map: Overrides the exception → ``error_type``
            mapping of the error channel.

    Raises:
        InvalidIdentifier: If the configured device id is invalid.
    """

    def __init__(
        self,
        settings: HomieSettings,
        *,
        mqtt: MqttPort | None = None,
        clock: ClockPort | None = None,
        error_type_map: dict[type[Exception], str] | None = None,
    ) -> None:
        self._settings = settings
        self._id = validate_topic_id(settings.device.id, kind="device")
        self._topic = join_topic(settings.mqtt.topic_root, self._id)
        self._qos = settings.mqtt.qos
        self._mqtt: MqttPort = (
            mqtt
            if mqtt is not None
            else MqttClient(
                settings=settings.mqtt,
                will=build_will_config(self._topic, qos=self._qos),
                client_id=self._id,
            )
        )
        self._errors = ErrorReporter(device=self._id)
        if error_type_map is not None:
            self._errors.error_type_map = dict(error_type_map)
        self._dispatcher = SetDispatcher(self, reporter=self._errors)
        self._stats = StatsReporter(
            mqtt=self._mqtt,
            device_topic=self._topic,
            interval=settings.device.stats_interval,
            clock=clock if clock is not None else SystemClock(),
            qos=self._qos,
        )
        self._nodes: dict[str, Node] = {}
        self._pending: dict[str, Property] = {}
        self._lock = threading.Lock()
        self._state = DeviceState.INIT
        self._task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"Device({self._topic!r}, state={self.state.value})"

    # -- Read-only properties -----------------------------------------------

    @property
    def id(self) -> str:
        """Device topic id."""
        return self._id

    @property
    def name(self) -> str:
        """Human-readable device name."""
        return self._settings.device.display_name

    @property
    def topic(self) -> str:
        """``{root}/{device}``."""
        return self._topic

    @property
    def settings(self) -> HomieSettings:
        """Settings the device was created with."""
        return self._settings

    @property
    def mqtt(self) -> MqttPort:
        """The transport adapter."""
        return self._mqtt

    @property
    def state(self) -> DeviceState:
        """Current lifecycle state.  Never blocks on network activity."""
        with self._lock:
            return self._state

    def get_state(self) -> DeviceState:
        """Return :attr:`state`."""
        return self.state

    @property
    def errors(self) -> ErrorReporter:
        """Error channel for failures that cannot be raised to a caller."""
        return self._errors

    @property
    def last_error(self) -> ErrorReport | None:
        """Most recent report on :attr:`errors`, or None."""
        return self._errors.last

    @property
    def nodes(self) -> Mapping[str, Node]:
        """Read-only view of the nodes, in creation order."""
        return MappingProxyType(self._nodes)

    # -- Tree registration ----------------------------------------------------

    def create_node(
        self,
        node_id: str,
        node_type: str,
        *,
        name: str | None = None,
    ) -> Node:
        """Create and register a node.

        Raises:
            LifecycleConflict: If the device is not in ``INIT``.
            InvalidIdentifier: If *node_id* violates the grammar.
            DuplicateIdentifier: If *node_id* is already registered.
        """
        self._ensure_configurable(f"create node {node_id}")
        node = Node(self, node_id, node_type, name=name)
        if node.id in self._nodes:
            msg = f"Node {node.id!r} already exists on device {self._id!r}"
            raise DuplicateIdentifier(msg)
        self._nodes[node.id] = node
        return node

    def get_node(self, node_id: str) -> Node | None:
        """Return the node *node_id*, or None."""
        return self._nodes.get(node_id)

    # -- Lifecycle ------------------------------------------------------------

    def setup(self) -> asyncio.Task[None]:
        """Start publishing the device; returns the running setup task.

        Must be called from within a running event loop.  Failures of
        the sequence are not raised: the device returns to ``INIT`` and
        the failure is reported on :attr:`errors`.

        Raises:
            LifecycleConflict: If the device is already active or a
                lifecycle sequence is in flight.
        """
        loop = asyncio.get_running_loop()
        self._transition(
            DeviceState.INIT,
            DeviceState.CONNECTING,
            action="set up",
            conflict="already active",
        )
        self._task = loop.create_task(
            self._run_setup(),
            name=f"homiekit-setup-{self._id}",
        )
        return self._task

    def shutdown(self) -> asyncio.Task[None]:
        """Start unpublishing the device; returns the running shutdown task.

        Raises:
            LifecycleConflict: If the device is in ``INIT`` or a
                lifecycle sequence is in flight.
        """
        loop = asyncio.get_running_loop()
        self._transition(
            DeviceState.READY,
            DeviceState.DISCONNECTING,
            action="shut down",
            conflict="not active",
        )
        self._task = loop.create_task(
            self._run_shutdown(),
            name=f"homiekit-shutdown-{self._id}",
        )
        return self._task

    async def __aenter__(self) -> Self:
        """Run :meth:`setup` to completion.

        Raises:
            HomieError: The reported failure if the device did not
                become ready.
        """
        await self.setup()
        if self.state is not DeviceState.READY:
            report = self._errors.last
            if report is not None and report.error is not None:
                raise report.error
            msg = f"Device {self._id!r} did not become ready"
            raise TransportFailure(msg)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Run :meth:`shutdown` to completion if the device is ready."""
        if self.state is DeviceState.READY:
            await self.shutdown()

    # -- Sequences ------------------------------------------------------------

    async def _run_setup(self) -> None:
        logger.info(
            "Setting up device %s",
            self._topic,
            extra=self._log_context("setup"),
        )
        try:
            await self._mqtt.connect()
            await self._publish_all(self._attributes())
            for node in self._nodes.values():
                await self._publish_node(node)
            for prop in self._settable_properties():
                await self._mqtt.subscribe(prop.set_topic, self._dispatcher.dispatch)
                logger.debug("Subscribed to %s", prop.set_topic)
            await self._flush_pending()
            await self._publish(self._state_topic, DeviceState.READY.value)
        except asyncio.CancelledError:
            self._pending.clear()
            try:
                with contextlib.suppress(Exception):
                    await asyncio.shield(self._mqtt.disconnect())
            finally:
                self._set_state(DeviceState.INIT)
            raise
        except Exception as exc:
            await self._abort_setup(exc)
            return
        self._set_state(DeviceState.READY)
        self._stats.start()
        logger.info("Device %s ready", self._topic, extra=self._log_context("setup"))
        # Values sent while $state=ready was in flight.
        try:
            await self._flush_pending()
        except Exception as exc:
            failure = _as_transport_failure(exc, "Publishing pending values failed")
            await self._errors.report(failure, details={"phase": "setup"})

    async def _abort_setup(self, exc: Exception) -> None:
        failure = _as_transport_failure(exc, f"Setup of device {self._id!r} failed")
        try:
            await self._mqtt.disconnect()
        except Exception:
            logger.debug("Disconnect after failed setup failed too", exc_info=True)
        self._pending.clear()
        await self._errors.report(failure, details={"phase": "setup"})
        self._set_state(DeviceState.INIT)

    async def _run_shutdown(self) -> None:
        logger.info(
            "Shutting down device %s",
            self._topic,
            extra=self._log_context("shutdown"),
        )
        try:
            await self._stats.stop()
            await self._attempt(
                "publish $state",
                self._publish(self._state_topic, "disconnected"),
            )
            for prop in self._settable_properties():
                await self._attempt(
                    f"unsubscribe {prop.set_topic}",
                    self._mqtt.unsubscribe(prop.set_topic),
                )
            await self._attempt("disconnect", self._mqtt.disconnect())
        finally:
            self._set_state(DeviceState.INIT)
        logger.info(
            "Device %s disconnected",
            self._topic,
            extra=self._log_context("shutdown"),
        )

    async def _attempt(self, step: str, operation: Awaitable[None]) -> None:
        """Run one shutdown step; report a failure and carry on."""
        try:
            await operation
        except Exception as exc:
            failure = _as_transport_failure(exc, f"Shutdown step {step!r} failed")
            await self._errors.report(
                failure,
                details={"phase": "shutdown", "step": step},
            )

    # -- Publishing -----------------------------------------------------------

    @property
    def _state_topic(self) -> str:
        return join_topic(self._topic, "$state")

    def _attributes(self) -> list[tuple[str, str]]:
        device = self._settings.device
        return [
            (join_topic(self._topic, "$homie"), CONVENTION_VERSION),
            (join_topic(self._topic, "$name"), self.name),
            (self._state_topic, DeviceState.INIT.value),
            (join_topic(self._topic, "$nodes"), ",".join(self._nodes)),
            (join_topic(self._topic, "$implementation"), device.implementation),
            (join_topic(self._topic, "$fw/name"), device.firmware_name),
            (join_topic(self._topic, "$fw/version"), device.firmware_version),
            *self._stats.attributes(),
        ]

    async def _publish_node(self, node: Node) -> None:
        await self._publish_all(node.attributes())
        for prop in node:
            await self._publish_all(prop.attributes())
            self._pending.pop(prop.topic, None)
            if prop.payload is not None:
                await self._publish(prop.topic, prop.payload)

    async def _flush_pending(self) -> None:
        while self._pending:
            _, prop = self._pending.popitem()
            if prop.payload is not None:
                await self._publish(prop.topic, prop.payload)

    async def _publish_all(self, attributes: list[tuple[str, str]]) -> None:
        for topic, payload in attributes:
            await self._publish(topic, payload)

    async def _publish(self, topic: str, payload: str) -> None:
        await self._mqtt.publish(topic, payload, retain=True, qos=self._qos)
        logger.debug("Published %s = %s", topic, payload)

    async def _publish_value(self, prop: Property, payload: str) -> bool:
        """Publish a property value; False if it was only cached.

        Values sent while connecting are queued and go out before
        ``$state=ready``.

        Raises:
            LifecycleConflict: While the device is disconnecting.
            TransportFailure: If the publish fails.
        """
        state = self.state
        if state is DeviceState.INIT:
            return False
        if state is DeviceState.CONNECTING:
            self._pending[prop.topic] = prop
            return False
        if state is not DeviceState.READY:
            msg = (
                f"Cannot send {prop.topic} while device {self._id!r} "
                f"is {state.value}"
            )
            raise LifecycleConflict(msg)
        try:
            await self._publish(prop.topic, payload)
        except TransportFailure:
            raise
        except Exception as exc:
            msg = f"Sending {prop.topic} failed: {exc}"
            raise TransportFailure(msg) from exc
        return True

    def _settable_properties(self) -> Iterator[Property]:
        for node in self._nodes.values():
            for prop in node:
                if prop.settable:
                    yield prop

    # -- State ----------------------------------------------------------------

    def _transition(
        self,
        expected: DeviceState,
        target: DeviceState,
        *,
        action: str,
        conflict: str,
    ) -> None:
        with self._lock:
            current = self._state
            if current in _IN_FLIGHT:
                msg = (
                    f"Cannot {action} device {self._id!r}: "
                    f"lifecycle busy ({current.value})"
                )
                raise LifecycleConflict(msg)
            if current is not expected:
                msg = f"Cannot {action} device {self._id!r}: {conflict}"
                raise LifecycleConflict(msg)
            self._state = target
        logger.debug("Device %s: %s -> %s", self._id, current.value, target.value)

    def _set_state(self, state: DeviceState) -> None:
        with self._lock:
            previous = self._state
            self._state = state
        logger.debug("Device %s: %s -> %s", self._id, previous.value, state.value)

    def _log_context(self, phase: str) -> dict[str, str]:
        return {"device": self._id, "phase": phase}

    def _ensure_configurable(self, action: str) -> None:
        """Reject tree changes outside ``INIT``."""
        state = self.state
        if state is not DeviceState.INIT:
            msg = (
                f"Cannot {action}: device {self._id!r} is {state.value}; "
                "the tree can only change in init"
            )
            raise LifecycleConflict(msg)


def _as_transport_failure(exc: Exception, context: str) -> TransportFailure:
    if isinstance(exc, TransportFailure):
        return exc
    failure = TransportFailure(f"{context}: {exc}")
    failure.__cause__ = exc
    return failure
