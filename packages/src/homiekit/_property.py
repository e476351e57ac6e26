"""Properties — the typed, optionally settable leaves of the device tree.

A property is created on demand through :meth:`Node.get_property` and
configured while its device is still in ``INIT``.  Once the device
starts a lifecycle pass the property's attributes are frozen; only
:meth:`Property.send` remains usable.

Topic layout (device ``D``, node ``N``, property ``P``)::

    {root}/D/N/P/$name        property name (retained)
    {root}/D/N/P/$unit        unit (retained)
    {root}/D/N/P/$datatype    data type (retained)
    {root}/D/N/P/$settable    "true" | "false" (retained)
    {root}/D/N/P/$format      format, when set (retained)
    {root}/D/N/P              current value (retained)
    {root}/D/N/P/set          inbound command (subscribed when settable)

Canonical value encoding:

==========  =========================  =====================
Data type   Python value               Payload
==========  =========================  =====================
STRING      ``str``                    as-is
INTEGER     ``int`` (not ``bool``)     ``str(value)``
FLOAT       finite ``float``           ``repr(value)``
BOOLEAN     ``bool``                   ``"true"`` / ``"false"``
ENUM        ``str`` listed in format   as-is
COLOR       3-tuple of ``int``         ``"r,g,b"`` / ``"h,s,v"``
==========  =========================  =====================
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, TypeAlias

from homiekit._errors import TypeMismatch
from homiekit._topics import join_topic, validate_topic_id

if TYPE_CHECKING:
    from homiekit._node import Node

logger = logging.getLogger(__name__)


class DataType(StrEnum):
    """Property data types; the value is the ``$datatype`` payload."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    ENUM = "enum"
    COLOR = "color"


SetCallback: TypeAlias = Callable[["Property", str], Awaitable[None] | None]
"""Handler for inbound ``set`` commands: ``(property, value_text)``."""

_COLOR_LIMITS: dict[str, tuple[int | None, ...]] = {
    "rgb": (255, 255, 255),
    "hsv": (360, 100, 100),
}

# ---------------------------------------------------------------------------
# Value encoding
# ---------------------------------------------------------------------------


def encode_value(datatype: DataType, value: object, fmt: str | None = None) -> str:
    """Return the canonical payload for *value*.

    Raises:
        TypeMismatch: If *value* does not match *datatype* (or is outside
            the enum values / colour ranges given by *fmt*).
    """
    match datatype:
        case DataType.STRING:
            if isinstance(value, str):
                return value
        case DataType.INTEGER:
            if isinstance(value, int) and not isinstance(value, bool):
                return str(value)
        case DataType.FLOAT:
            if isinstance(value, float):
                if not math.isfinite(value):
                    msg = f"Non-finite float {value!r} cannot be published"
                    raise TypeMismatch(msg)
                return repr(value)
        case DataType.BOOLEAN:
            if isinstance(value, bool):
                return _flag(value)
        case DataType.ENUM:
            if isinstance(value, str):
                if fmt and value not in fmt.split(","):
                    msg = f"{value!r} is not one of the enum values {fmt!r}"
                    raise TypeMismatch(msg)
                return value
        case DataType.COLOR:
            if isinstance(value, tuple) and _is_color(value):
                _check_color_range(value, fmt)
                return ",".join(str(channel) for channel in value)
    msg = (
        f"Value {value!r} of type {type(value).__name__} "
        f"does not match data type {datatype.value}"
    )
    raise TypeMismatch(msg)


def _is_color(value: tuple[object, ...]) -> bool:
    return (
        len(value) == 3  # noqa: PLR2004
        and all(isinstance(c, int) and not isinstance(c, bool) for c in value)
    )


def _check_color_range(value: tuple[int, ...], fmt: str | None) -> None:
    limits = _COLOR_LIMITS.get(fmt or "", (None, None, None))
    for channel, limit in zip(value, limits, strict=True):
        if channel < 0 or (limit is not None and channel > limit):
            msg = f"Colour {value!r} is out of range for format {fmt!r}"
            raise TypeMismatch(msg)


def _flag(value: bool) -> str:  # noqa: FBT001
    return "true" if value else "false"


# ---------------------------------------------------------------------------
# Property
# ---------------------------------------------------------------------------


class Property:
    """A single named, typed attribute of a node.

    Not constructed directly — use :meth:`Node.get_property`.
    """

    def __init__(self, node: Node, property_id: str) -> None:
        self._node = node
        self._id = validate_topic_id(property_id, kind="property")
        self._name = property_id
        self._unit = ""
        self._datatype = DataType.STRING
        self._format: str | None = None
        self._callback: SetCallback | None = None
        self._value: object = None
        self._payload: str | None = None

    def __repr__(self) -> str:
        return f"Property({self.topic!r}, datatype={self._datatype.value})"

    # -- Read-only properties -----------------------------------------------

    @property
    def id(self) -> str:
        """Property topic id."""
        return self._id

    @property
    def node(self) -> Node:
        """The owning node."""
        return self._node

    @property
    def topic(self) -> str:
        """Value topic, ``{root}/{device}/{node}/{property}``."""
        return join_topic(self._node.topic, self._id)

    @property
    def set_topic(self) -> str:
        """Inbound command topic."""
        return join_topic(self.topic, "set")

    @property
    def settable(self) -> bool:
        """True once :meth:`make_settable` has been called."""
        return self._callback is not None

    @property
    def callback(self) -> SetCallback | None:
        """The registered set-callback, or None."""
        return self._callback

    @property
    def value(self) -> object:
        """The last value passed to :meth:`send`, or None."""
        return self._value

    @property
    def payload(self) -> str | None:
        """Encoded form of :attr:`value`, or None."""
        return self._payload

    # -- Configurable attributes (INIT only) ----------------------------------

    @property
    def name(self) -> str:
        """Human-readable name (defaults to the id)."""
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        self._ensure_configurable("name")
        self._name = value

    @property
    def unit(self) -> str:
        """Unit string, e.g. ``"°C"``."""
        return self._unit

    @unit.setter
    def unit(self, value: str) -> None:
        self._ensure_configurable("unit")
        self._unit = value

    @property
    def datatype(self) -> DataType:
        """Declared data type."""
        return self._datatype

    @datatype.setter
    def datatype(self, value: DataType | str) -> None:
        self._ensure_configurable("datatype")
        self._datatype = DataType(value)
        self._value = None
        self._payload = None

    @property
    def format(self) -> str | None:
        """``$format`` attribute: enum values, ``rgb``/``hsv``, or a range."""
        return self._format

    @format.setter
    def format(self, value: str | None) -> None:
        self._ensure_configurable("format")
        self._format = value or None

    def make_settable(self, callback: SetCallback) -> SetCallback:
        """Accept inbound ``set`` commands and route them to *callback*.

        The subscription is made during the next ``setup()``.  Can be
        used as a decorator::

            @prop.make_settable
            def on_set(prop: Property, value: str) -> None: ...

        Returns:
            The callback unchanged.

        Raises:
            TypeError: If *callback* is not callable.
            LifecycleConflict: If the device is not in ``INIT``.
        """
        if not callable(callback):
            msg = f"Set callback for {self.topic} must be callable, got {callback!r}"
            raise TypeError(msg)
        self._ensure_configurable("settable")
        self._callback = callback
        return callback

    # -- Publishing -----------------------------------------------------------

    def attributes(self) -> list[tuple[str, str]]:
        """Attribute ``(topic, payload)`` pairs in publication order."""
        attributes = [
            (join_topic(self.topic, "$name"), self._name),
            (join_topic(self.topic, "$unit"), self._unit),
            (join_topic(self.topic, "$datatype"), self._datatype.value),
            (join_topic(self.topic, "$settable"), _flag(self.settable)),
        ]
        if self._format is not None:
            attributes.append((join_topic(self.topic, "$format"), self._format))
        return attributes

    async def send(self, value: object) -> None:
        """Publish *value* on the property's value topic (retained).

        While the device is in ``INIT`` the value is only cached and
        published during the next ``setup()``; while it is connecting the
        value goes out before ``$state=ready``.

        Raises:
            TypeMismatch: If *value* does not match :attr:`datatype`;
                nothing is published.
            LifecycleConflict: If the device is disconnecting.
            TransportFailure: If the publish fails.
        """
        payload = encode_value(self._datatype, value, self._format)
        device = self._node.device
        if await device._publish_value(self, payload):
            logger.debug("Sent %s = %s", self.topic, payload)
        else:
            logger.debug("Cached %s = %s until the device is ready", self.topic, payload)
        self._value = value
        self._payload = payload

    # -- Internal -------------------------------------------------------------

    def _ensure_configurable(self, attribute: str) -> None:
        self._node.device._ensure_configurable(f"change {attribute} of {self.topic}")
