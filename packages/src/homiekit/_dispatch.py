"""Inbound ``set`` command dispatch.

During ``setup()`` the device subscribes to the command topic of every
settable property and registers :meth:`SetDispatcher.dispatch` as the
handler::

    {root}/{device}/{node}/{property}/set   → routed here

The dispatcher resolves the property through the device tree, decodes
the payload to text and invokes the property's set-callback with
``(property, text)``.  It performs no type coercion and does not echo
the value back; callbacks call :meth:`Property.send` themselves when
the new value should be reported.

Callback failures are isolated per message: they are logged, reported
as :class:`~homiekit.CallbackFailure`, and later messages are still
dispatched.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING

from homiekit._errors import CallbackFailure, ErrorReporter

if TYPE_CHECKING:
    from homiekit._device import Device
    from homiekit._property import Property

logger = logging.getLogger(__name__)

_SET_SUFFIX = "/set"


class SetDispatcher:
    """Routes inbound command messages to property set-callbacks.

    Holds no registry of its own; the device tree is the only source
    of topic → property resolution.
    """

    def __init__(self, device: Device, *, reporter: ErrorReporter) -> None:
        self._device = device
        self._reporter = reporter

    async def dispatch(self, topic: str, payload: bytes | str) -> None:
        """Handle one inbound message delivered by the transport.

        Silently ignores (with a WARNING) topics outside the device's
        namespace and properties that are unknown or not settable.
        """
        prop = self.resolve(topic)
        if prop is None:
            logger.warning(
                "No settable property for command topic %s",
                topic,
                extra={"topic": topic},
            )
            return

        callback = prop.callback
        if callback is None:
            logger.warning(
                "Property %s is not settable (topic: %s)",
                prop.topic,
                topic,
                extra={"topic": topic},
            )
            return

        value = self._decode(payload)
        logger.debug("Set %s = %r", prop.topic, value)
        try:
            result = callback(prop, value)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.exception(
                "Set-callback for %s failed",
                prop.topic,
                extra={"topic": topic},
            )
            failure = CallbackFailure(f"Set-callback for {prop.topic} failed: {exc}")
            failure.__cause__ = exc
            await self._reporter.report(
                failure,
                details={"topic": topic, "payload": value},
            )

    def resolve(self, topic: str) -> Property | None:
        """Return the property addressed by a command *topic*, or None."""
        prefix = self._device.topic + "/"
        if not (topic.startswith(prefix) and topic.endswith(_SET_SUFFIX)):
            return None
        middle = topic[len(prefix) : -len(_SET_SUFFIX)]
        parts = middle.split("/")
        if len(parts) != 2:  # noqa: PLR2004
            return None
        node_id, property_id = parts
        node = self._device.nodes.get(node_id)
        if node is None:
            return None
        return node.properties.get(property_id)

    @staticmethod
    def _decode(payload: bytes | str) -> str:
        if isinstance(payload, bytes):
            return payload.decode("utf-8", errors="replace")
        return payload
