"""Test factory for HomieSettings.

Provides :func:`make_settings` — creates
:class:`~homiekit._settings.HomieSettings` instances without reading
``.env`` files or real environment variables.
"""

from __future__ import annotations

from typing import Any

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from homiekit._settings import DeviceSettings, HomieSettings

TEST_DEVICE_ID = "test-device"
TEST_DEVICE_NAME = "Test Device"


class _IsolatedSettings(HomieSettings):
    """Settings subclass that ignores all ambient configuration sources."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],  # noqa: ARG003
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings,)


def make_settings(**overrides: Any) -> HomieSettings:
    """Create ``HomieSettings`` with deterministic test defaults.

    The only configuration source is the keyword arguments: the
    factory ignores ``os.environ``, ``.env`` files and secret
    directories.  When no ``device`` is given, a device with id
    ``"test-device"``, name ``"Test Device"`` and periodic statistics
    disabled is used.

    Example::

        settings = make_settings()
        assert settings.device.id == "test-device"

        custom = make_settings(device=DeviceSettings(id="lamp"))
        assert custom.mqtt.topic_root == "homie"
    """
    overrides.setdefault(
        "device",
        DeviceSettings(id=TEST_DEVICE_ID, name=TEST_DEVICE_NAME, stats_interval=0),
    )
    # _env_file is a valid pydantic-settings runtime kwarg that disables
    # dotenv loading, but it isn't reflected in the generated __init__
    # signature, so the type: ignore stays.
    return _IsolatedSettings(_env_file=None, **overrides)  # type: ignore[call-arg]
