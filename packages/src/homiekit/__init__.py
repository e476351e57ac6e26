"""homiekit.

Publish devices following the Homie convention over MQTT: a tree of
nodes and properties, a connect/publish/subscribe lifecycle, and
inbound ``set`` command dispatch.
"""

from importlib.metadata import PackageNotFoundError, version

from homiekit._clock import ClockPort, SystemClock
from homiekit._device import CONVENTION_VERSION, Device, DeviceState
from homiekit._dispatch import SetDispatcher
from homiekit._errors import (
    CallbackFailure,
    DuplicateIdentifier,
    ErrorListener,
    ErrorReport,
    ErrorReporter,
    HomieError,
    InvalidIdentifier,
    LifecycleConflict,
    TransportFailure,
    TypeMismatch,
    build_error_report,
)
from homiekit._logging import JsonFormatter, configure_logging
from homiekit._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttPort,
    NullMqttClient,
    WillConfig,
)
from homiekit._node import Node
from homiekit._property import DataType, Property, SetCallback, encode_value
from homiekit._settings import (
    DeviceSettings,
    HomieSettings,
    LoggingSettings,
    MqttSettings,
)
from homiekit._stats import StatsReporter, build_will_config
from homiekit._topics import is_valid_topic_id, validate_topic_id

try:
    __version__ = version("homiekit")
except PackageNotFoundError:
    # Editable checkouts without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Device tree
    "CONVENTION_VERSION",
    "DataType",
    "Device",
    "DeviceState",
    "Node",
    "Property",
    "SetCallback",
    "SetDispatcher",
    "encode_value",
    # Topic ids
    "is_valid_topic_id",
    "validate_topic_id",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttPort",
    "NullMqttClient",
    "WillConfig",
    # Errors
    "CallbackFailure",
    "DuplicateIdentifier",
    "ErrorListener",
    "ErrorReport",
    "ErrorReporter",
    "HomieError",
    "InvalidIdentifier",
    "LifecycleConflict",
    "TransportFailure",
    "TypeMismatch",
    "build_error_report",
    # Stats
    "StatsReporter",
    "build_will_config",
    # Settings
    "DeviceSettings",
    "HomieSettings",
    "LoggingSettings",
    "MqttSettings",
]
