"""Nodes — named groups of properties under a device.

Topic layout::

    {root}/{device}/{node}/$name          node name (retained)
    {root}/{device}/{node}/$type          free-form type label (retained)
    {root}/{device}/{node}/$properties    property ids, comma separated
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from homiekit._property import Property
from homiekit._topics import join_topic, validate_topic_id

if TYPE_CHECKING:
    from homiekit._device import Device


class Node:
    """Named collection of properties owned by one device.

    Not constructed directly — use :meth:`Device.create_node`.  Keeps
    a back-reference to the device for topic building and for
    rejecting changes once the tree is frozen.
    """

    def __init__(
        self,
        device: Device,
        node_id: str,
        node_type: str,
        *,
        name: str | None = None,
    ) -> None:
        self._device = device
        self._id = validate_topic_id(node_id, kind="node")
        self._type = node_type
        self._name = name or node_id
        self._properties: dict[str, Property] = {}

    def __repr__(self) -> str:
        return f"Node({self.topic!r}, type={self._type!r})"

    def __iter__(self) -> Iterator[Property]:
        return iter(self._properties.values())

    def __len__(self) -> int:
        return len(self._properties)

    def __contains__(self, property_id: object) -> bool:
        return property_id in self._properties

    @property
    def id(self) -> str:
        """Node topic id."""
        return self._id

    @property
    def device(self) -> Device:
        """The owning device."""
        return self._device

    @property
    def topic(self) -> str:
        """``{root}/{device}/{node}``."""
        return join_topic(self._device.topic, self._id)

    @property
    def properties(self) -> Mapping[str, Property]:
        """Read-only view of the properties, in creation order."""
        return MappingProxyType(self._properties)

    @property
    def name(self) -> str:
        """Human-readable name (defaults to the id)."""
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        self._device._ensure_configurable(f"rename node {self._id}")
        self._name = value

    @property
    def type(self) -> str:
        """Free-form type label."""
        return self._type

    @type.setter
    def type(self, value: str) -> None:
        self._device._ensure_configurable(f"change type of node {self._id}")
        self._type = value

    def get_property(self, property_id: str) -> Property:
        """Return the property *property_id*, creating it on first access.

        New properties default to ``STRING``, an empty unit, and not
        settable.

        Raises:
            InvalidIdentifier: If *property_id* violates the grammar.
            LifecycleConflict: If the property does not exist yet and the
                device has left ``INIT``.
        """
        existing = self._properties.get(property_id)
        if existing is not None:
            return existing
        self._device._ensure_configurable(
            f"add property {property_id} to node {self._id}",
        )
        prop = Property(self, property_id)
        self._properties[prop.id] = prop
        return prop

    def attributes(self) -> list[tuple[str, str]]:
        """Node attribute ``(topic, payload)`` pairs in publication order."""
        return [
            (join_topic(self.topic, "$name"), self._name),
            (join_topic(self.topic, "$type"), self._type),
            (join_topic(self.topic, "$properties"), ",".join(self._properties)),
        ]
