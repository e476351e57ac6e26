"""MQTT transport port and adapters.

The device core talks to the bus only through :class:`MqttPort`:
``connect``, ``publish``, ``subscribe``, ``unsubscribe`` and
``disconnect``.  It never inspects transport state beyond the
success or failure of each call.

Three implementations:

- MqttClient — real aiomqtt-based client with reconnection
- MockMqttClient — test double that records calls and keeps retained values
- NullMqttClient — silent no-op adapter

Design decisions:

- aiomqtt imported lazily inside MqttClient._connection_loop() so Mock/Null
  work without aiomqtt installed
- Endpoint and credentials are bound at construction from MqttSettings
- Handlers are registered per subscription and restored on reconnect
- Payloads are handed to handlers undecoded; decoding belongs to the consumer
- WillConfig abstracts LWT without leaking aiomqtt types
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from homiekit._errors import TransportFailure
from homiekit._settings import MqttSettings
from homiekit._topics import topic_matches

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

MessageCallback = Callable[[str, bytes | str], Awaitable[None]]
"""Async handler receiving (topic, raw payload) for each inbound message."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WillConfig:
    """Last-Will-and-Testament configuration.

    Abstracts ``aiomqtt.Will`` so that callers never depend on the
    aiomqtt package directly.
    """

    topic: str
    payload: str = "lost"
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Transport contract consumed by :class:`~homiekit.Device`.

    Every method either completes (acknowledged) or raises.
    """

    async def connect(self) -> None: ...

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str, handler: MessageCallback) -> None: ...

    async def unsubscribe(self, topic: str) -> None: ...

    async def disconnect(self) -> None: ...


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Silent no-op MQTT adapter.

    Every method is a no-op that logs at DEBUG level.  Useful for
    running a device tree without a broker.
    """

    async def connect(self) -> None:
        """Pretend to connect."""
        logger.debug("NullMqttClient.connect() — discarded")

    async def publish(
        self,
        topic: str,
        payload: str,  # noqa: ARG002
        *,
        retain: bool = False,  # noqa: ARG002
        qos: int = 1,  # noqa: ARG002
    ) -> None:
        """Silently discard a publish request."""
        logger.debug("NullMqttClient.publish(%s) — discarded", topic)

    async def subscribe(
        self,
        topic: str,
        handler: MessageCallback,  # noqa: ARG002
    ) -> None:
        """Silently discard a subscribe request."""
        logger.debug("NullMqttClient.subscribe(%s) — discarded", topic)

    async def unsubscribe(self, topic: str) -> None:
        """Silently discard an unsubscribe request."""
        logger.debug("NullMqttClient.unsubscribe(%s) — discarded", topic)

    async def disconnect(self) -> None:
        """Pretend to disconnect."""
        logger.debug("NullMqttClient.disconnect() — discarded")


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory test double that records MQTT interactions.

    Behaves like a single-client broker: retained publishes are kept
    in :attr:`retained` (an empty retained payload clears the topic)
    and ``deliver()`` routes a simulated inbound message to every
    matching subscription handler.

    Failure injection:

    - ``connect_error`` — raised by ``connect()``.
    - ``fail_topics`` — ``publish``/``subscribe`` on these topics raise
      :class:`~homiekit.TransportFailure`.
    - ``connect_gate`` — when set, ``connect()`` waits for the event,
      simulating a stalled broker handshake.
    """

    published: list[tuple[str, str, bool, int]] = field(
        default_factory=list,
    )
    subscriptions: dict[str, MessageCallback] = field(default_factory=dict)
    unsubscriptions: list[str] = field(default_factory=list)
    retained: dict[str, str] = field(default_factory=dict)
    connect_count: int = 0
    disconnect_count: int = 0
    connected: bool = False
    connect_error: Exception | None = None
    fail_topics: set[str] = field(default_factory=set)
    connect_gate: asyncio.Event | None = field(default=None, repr=False)

    # -- MqttPort methods --------------------------------------------------

    async def connect(self) -> None:
        """Record a connect call, honouring injected stalls and failures."""
        self.connect_count += 1
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Record a publish call and update the retained map."""
        if topic in self.fail_topics:
            msg = f"Simulated publish failure on {topic}"
            raise TransportFailure(msg)
        self.published.append((topic, payload, retain, qos))
        if retain:
            if payload:
                self.retained[topic] = payload
            else:
                self.retained.pop(topic, None)

    async def subscribe(self, topic: str, handler: MessageCallback) -> None:
        """Record a subscription and its handler."""
        if topic in self.fail_topics:
            msg = f"Simulated subscribe failure on {topic}"
            raise TransportFailure(msg)
        self.subscriptions[topic] = handler

    async def unsubscribe(self, topic: str) -> None:
        """Drop a subscription."""
        self.subscriptions.pop(topic, None)
        self.unsubscriptions.append(topic)

    async def disconnect(self) -> None:
        """Record a disconnect call."""
        self.disconnect_count += 1
        self.connected = False

    # -- Test helpers -------------------------------------------------------

    async def deliver(self, topic: str, payload: bytes | str) -> None:
        """Simulate an inbound message by invoking matching handlers.

        Handler exceptions propagate; the real client's dispatch
        loop is the one that isolates them.
        """
        for pattern, handler in list(self.subscriptions.items()):
            if topic_matches(pattern, topic):
                await handler(topic, payload)

    @property
    def publish_count(self) -> int:
        """Number of recorded publishes."""
        return len(self.published)

    @property
    def subscribe_count(self) -> int:
        """Number of active subscriptions."""
        return len(self.subscriptions)

    @property
    def published_topics(self) -> list[str]:
        """Topics of all recorded publishes, in order."""
        return [topic for topic, _payload, _retain, _qos in self.published]

    def reset(self) -> None:
        """Clear all recorded data, retained values and subscriptions."""
        self.published.clear()
        self.subscriptions.clear()
        self.unsubscriptions.clear()
        self.retained.clear()
        self.connect_count = 0
        self.disconnect_count = 0

    def get_messages_for(
        self,
        topic: str,
    ) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Production MQTT adapter backed by *aiomqtt*.

    ``connect()`` starts a background task that owns the broker
    session and returns once the first connection attempt has
    succeeded.  A failed first attempt raises
    :class:`~homiekit.TransportFailure`; once connected, lost sessions
    are re-established with exponential backoff and every tracked
    subscription is restored.
    """

    settings: MqttSettings
    will: WillConfig | None = None
    client_id: str = ""

    # internal state --------------------------------------------------------
    _handlers: dict[str, MessageCallback] = field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _first_attempt: asyncio.Future[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)

    # -- MqttPort methods --------------------------------------------------

    async def connect(self) -> None:
        """Start the connection loop and wait for the first session.

        Raises:
            TransportFailure: If the broker cannot be reached.
        """
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient.connect() called while already running")
            if self._first_attempt is not None:
                await asyncio.shield(self._first_attempt)
            return
        self._stopping = False
        self._first_attempt = asyncio.get_running_loop().create_future()
        self._listen_task = asyncio.create_task(self._connection_loop())
        await self._first_attempt

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish a message to the broker.

        Raises:
            TransportFailure: If the client is not connected or the
                broker rejects the publish.
        """
        client = self._require_client()
        try:
            await client.publish(topic, payload, qos=qos, retain=retain)
        except Exception as exc:
            msg = f"Publish to {topic} failed: {exc}"
            raise TransportFailure(msg) from exc
        logger.debug(
            "Published to %s (qos=%d, retain=%s)",
            topic,
            qos,
            retain,
        )

    async def subscribe(self, topic: str, handler: MessageCallback) -> None:
        """Subscribe to *topic* and route its messages to *handler*.

        The subscription is tracked so it can be restored after a
        reconnection.

        Raises:
            TransportFailure: If the client is not connected or the
                broker rejects the subscription.
        """
        client = self._require_client()
        self._handlers[topic] = handler
        try:
            await client.subscribe(topic, qos=self.settings.qos)
        except Exception as exc:
            self._handlers.pop(topic, None)
            msg = f"Subscribe to {topic} failed: {exc}"
            raise TransportFailure(msg) from exc
        logger.debug("Subscribed to %s", topic)

    async def unsubscribe(self, topic: str) -> None:
        """Stop routing *topic* and unsubscribe if connected."""
        self._handlers.pop(topic, None)
        if self._client is None:
            return
        try:
            await self._client.unsubscribe(topic)
        except Exception as exc:
            msg = f"Unsubscribe from {topic} failed: {exc}"
            raise TransportFailure(msg) from exc

    async def disconnect(self) -> None:
        """Stop the connection loop and forget all subscriptions.

        Idempotent — safe to call multiple times.
        """
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()
        self._handlers.clear()

    @property
    def is_connected(self) -> bool:
        """Whether the client is currently connected to the broker."""
        return self._connected.is_set()

    # -- Internal -----------------------------------------------------------

    def _require_client(self) -> Any:
        if self._client is None:
            msg = "MqttClient is not connected"
            raise TransportFailure(msg)
        return self._client

    def _fail_first_attempt(self, error: Exception) -> bool:
        """Fail a pending ``connect()``; False if it already completed."""
        if self._first_attempt is None or self._first_attempt.done():
            return False
        self._first_attempt.set_exception(error)
        return True

    async def _connection_loop(self) -> None:
        """Maintain a persistent connection with auto-reconnect.

        ``aiomqtt`` is imported lazily here so that ``MockMqttClient``
        and ``NullMqttClient`` work without the dependency.
        """
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError:
            self._fail_first_attempt(
                TransportFailure("aiomqtt is required to use MqttClient"),
            )
            return

        delay = self.settings.reconnect_interval
        try:
            while not self._stopping:
                try:
                    await self._run_session(aiomqtt)
                    delay = self.settings.reconnect_interval
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    msg = (
                        f"Cannot connect to MQTT broker "
                        f"{self.settings.host}:{self.settings.port}: {exc}"
                    )
                    if self._fail_first_attempt(TransportFailure(msg)):
                        return
                    logger.warning(
                        "MQTT connection lost, reconnecting in %.1fs",
                        delay,
                        exc_info=True,
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.settings.reconnect_max_interval)
        finally:
            self._fail_first_attempt(
                TransportFailure("MQTT connection loop stopped before connecting"),
            )

    async def _run_session(self, aiomqtt: Any) -> None:
        """Run one broker session until the connection drops."""
        password: str | None = None
        if self.settings.password is not None:
            password = self.settings.password.get_secret_value()

        will: Any = None
        if self.will is not None:
            will = aiomqtt.Will(
                topic=self.will.topic,
                payload=self.will.payload,
                qos=self.will.qos,
                retain=self.will.retain,
            )

        async with aiomqtt.Client(
            hostname=self.settings.host,
            port=self.settings.port,
            username=self.settings.username,
            password=password,
            identifier=self.settings.client_id or self.client_id or None,
            keepalive=self.settings.keepalive,
            will=will,
        ) as client:
            self._client = client
            try:
                for topic in list(self._handlers):
                    await client.subscribe(topic, qos=self.settings.qos)

                self._connected.set()
                logger.info(
                    "MQTT connected to %s:%d",
                    self.settings.host,
                    self.settings.port,
                )
                if self._first_attempt is not None and not self._first_attempt.done():
                    self._first_attempt.set_result(None)

                async for message in client.messages:
                    await self._dispatch(message)
            finally:
                self._connected.clear()
                self._client = None

    async def _dispatch(self, message: Any) -> None:
        """Fan out an inbound message to the handlers of matching topics."""
        topic = str(message.topic)

        if message.payload is None:
            logger.debug(
                "Skipping message with None payload on %s",
                topic,
            )
            return

        payload: bytes | str
        if isinstance(message.payload, (bytes, bytearray)):
            payload = bytes(message.payload)
        else:
            payload = str(message.payload)

        for pattern, handler in list(self._handlers.items()):
            if not topic_matches(pattern, topic):
                continue
            try:
                await handler(topic, payload)
            except Exception:
                logger.exception(
                    "Error in message handler for %s",
                    topic,
                )
