"""Device configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  Variables carry the ``HOMIE_`` prefix and nested models use
``__`` as the delimiter, e.g. ``HOMIE_MQTT__HOST=broker.local``.

The schema covers three concerns:

* **MQTT** — broker connection and topic root.
* **Device** — id, name, firmware and ``$stats`` reporting.
* **Logging** — level, format, optional file sink, rotation.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from homiekit._topics import is_valid_topic_root, validate_topic_id

# -------------------------------------------------------------------
# Sub-models (BaseModel, not BaseSettings; nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        HOMIE_MQTT__HOST=broker.local
        HOMIE_MQTT__PORT=1883
        HOMIE_MQTT__USERNAME=user
        HOMIE_MQTT__PASSWORD=secret
        HOMIE_MQTT__TOPIC_ROOT=homie
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the device id is used "
            "so broker logs show which device a session belongs to."
        ),
    )
    keepalive: Annotated[int, Field(ge=1)] = Field(
        default=60,
        description="Seconds between MQTT keepalive pings.",
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS used for every publish and subscription.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Initial seconds to wait before reconnecting after "
            "connection loss.  Doubles on each consecutive failure "
            "up to ``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )
    topic_root: str = Field(
        default="homie",
        description="Root prefix for all device topics.",
    )

    @field_validator("topic_root")
    @classmethod
    def _check_topic_root(cls, value: str) -> str:
        if not is_valid_topic_root(value):
            msg = f"Invalid topic root {value!r}"
            raise ValueError(msg)
        return value


class DeviceSettings(BaseModel):
    """Identity and firmware description of the published device.

    Environment variables::

        HOMIE_DEVICE__ID=living-room-sensor
        HOMIE_DEVICE__NAME="Living room sensor"
        HOMIE_DEVICE__FIRMWARE_VERSION=1.2.0
    """

    id: str = Field(
        description="Device topic id (lowercase letters, digits, hyphens).",
    )
    name: str = Field(
        default="",
        description="Human-readable device name. Empty means the id.",
    )
    firmware_name: str = Field(
        default="homiekit",
        description="Published as ``$fw/name``.",
    )
    firmware_version: str = Field(
        default="0.0.0",
        description="Published as ``$fw/version``.",
    )
    implementation: str = Field(
        default="homiekit",
        description="Published as ``$implementation``.",
    )
    stats_interval: Annotated[float, Field(ge=0)] = Field(
        default=60.0,
        description=(
            "Seconds between ``$stats/uptime`` publications. "
            "``0`` disables periodic statistics."
        ),
    )

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        return validate_topic_id(value, kind="device")

    @property
    def display_name(self) -> str:
        """The configured name, falling back to the id."""
        return self.name or self.id


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    The ``format`` field selects the output format:

    - ``"json"`` (default) — structured JSON lines for log
      aggregators.
    - ``"text"`` — human-readable timestamped lines.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description=(
            "Maximum log file size in megabytes before rotation. "
            "Only applies when ``file`` is set."
        ),
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class HomieSettings(BaseSettings):
    """Root settings for one homiekit device.

    Example ``.env``::

        HOMIE_MQTT__HOST=broker.local
        HOMIE_DEVICE__ID=my-device
        HOMIE_DEVICE__NAME="My Device"
        HOMIE_LOGGING__LEVEL=DEBUG
        HOMIE_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="HOMIE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    device: DeviceSettings = Field(
        description="Identity of the published device.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
