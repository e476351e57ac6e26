"""Unit tests for homiekit._node — property registry of a node.

Test Techniques Used:
    - Specification-based Testing: Defaults, topics, attributes
    - State Inspection: Ordered, idempotent property registry
    - State Transition Testing: Registry frozen outside INIT
"""

from __future__ import annotations

import pytest

from homiekit._device import Device
from homiekit._errors import InvalidIdentifier, LifecycleConflict


class TestNodeBasics:
    """Node identity and attributes.

    Technique: Specification-based Testing.
    """

    def test_name_defaults_to_id(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        assert node.id == "relay"
        assert node.name == "relay"
        assert node.type == "switch"
        assert node.device is device
        assert node.topic == "homie/test-device/relay"

    def test_explicit_name(self, device: Device) -> None:
        node = device.create_node("relay", "switch", name="Garden relay")
        assert node.name == "Garden relay"

    def test_invalid_id(self, device: Device) -> None:
        with pytest.raises(InvalidIdentifier, match="Invalid node id"):
            device.create_node("Relay_1", "switch")
        assert device.nodes == {}

    def test_attributes(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        node.get_property("on")
        node.get_property("power")
        assert node.attributes() == [
            ("homie/test-device/relay/$name", "relay"),
            ("homie/test-device/relay/$type", "switch"),
            ("homie/test-device/relay/$properties", "on,power"),
        ]

    def test_attributes_without_properties(self, device: Device) -> None:
        node = device.create_node("empty", "group")
        assert dict(node.attributes())["homie/test-device/empty/$properties"] == ""


class TestNodeProperties:
    """get_property registry semantics.

    Technique: State Inspection.
    """

    def test_get_property_is_idempotent(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        first = node.get_property("on")
        assert node.get_property("on") is first
        assert len(node) == 1

    def test_preserves_creation_order(self, device: Device) -> None:
        node = device.create_node("meter", "sensor")
        for property_id in ("voltage", "current", "power"):
            node.get_property(property_id)
        assert list(node.properties) == ["voltage", "current", "power"]
        assert [p.id for p in node] == ["voltage", "current", "power"]

    def test_contains(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        node.get_property("on")
        assert "on" in node
        assert "off" not in node

    def test_properties_view_is_read_only(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        with pytest.raises(TypeError):
            node.properties["on"] = None  # type: ignore[index]


class TestNodeFrozenAfterInit:
    """Registry and attributes are frozen once the device is active.

    Technique: State Transition Testing.
    """

    async def test_existing_property_lookup_allowed(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        prop = node.get_property("on")
        await device.setup()
        assert node.get_property("on") is prop
        await device.shutdown()

    async def test_new_property_rejected(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        await device.setup()
        with pytest.raises(LifecycleConflict):
            node.get_property("power")
        assert "power" not in node
        await device.shutdown()

    async def test_rename_rejected(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        await device.setup()
        with pytest.raises(LifecycleConflict):
            node.name = "Other"
        with pytest.raises(LifecycleConflict):
            node.type = "dimmer"
        await device.shutdown()

    async def test_changes_allowed_again_after_shutdown(self, device: Device) -> None:
        node = device.create_node("relay", "switch")
        await device.setup()
        await device.shutdown()
        node.name = "Relay"
        assert node.get_property("power").id == "power"
