"""Pytest configuration and shared fixtures."""

import pytest

# Loaded from conftest rather than an entry point so that the homiekit
# import chain happens after pytest-cov has started tracing.
pytest_plugins = ["homiekit.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests over the device harness"
    )
