"""
Pytest configuration and shared fixtures.

This file contains pytest configuration and fixtures that are shared
across multiple test modules.
"""

import os
from unittest.mock import MagicMock

import pytest


@pytest.fixture
def sample_events():
    """Provide a small list of Seq events, newest first."""
    return [
        {
            "Id": "event-3",
            "Timestamp": "2025-05-17T04:46:00.0000000Z",
            "Level": "Error",
            "RenderedMessage": "Job JOB-123 failed",
            "Properties": [{"Name": "AppName", "Value": "pims-services"}],
        },
        {
            "Id": "event-2",
            "Timestamp": "2025-05-17T04:45:00.0000000Z",
            "Level": "Information",
            "RenderedMessage": "Job JOB-123 started",
            "Properties": [{"Name": "AppName", "Value": "pims-services"}],
        },
        {
            "Id": "event-1",
            "Timestamp": "2025-05-17T04:44:00.0000000Z",
            "Level": "Information",
            "RenderedMessage": "Job JOB-123 queued",
            "Properties": [{"Name": "AppName", "Value": "pims-services"}],
        },
    ]


@pytest.fixture
def mock_connection(sample_events):
    """A connection double whose enumeration yields ``sample_events``."""
    connection = MagicMock()
    connection.enumerate_events.side_effect = lambda *args, **kwargs: iter(sample_events)
    connection.list_signals.return_value = [{"Id": "signal-1", "Title": "Errors"}]
    return connection


@pytest.fixture
def mock_factory(mock_connection):
    """A connection factory double that always returns ``mock_connection``."""
    factory = MagicMock()
    factory.create.return_value = mock_connection
    return factory


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Tests going through the MCP layer count as integration tests
        if "test_server" in item.nodeid:
            item.add_marker(pytest.mark.integration)

        if not any(marker.name == "integration" for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def setup_test_environment():
    """
    Set up test environment variables.

    Runs automatically for every test so Seq settings from the developer's
    shell or .env file never leak into assertions.
    """
    original_env = os.environ.copy()

    for name in list(os.environ):
        if name.startswith("SEQ_"):
            os.environ.pop(name)

    yield

    os.environ.clear()
    os.environ.update(original_env)
