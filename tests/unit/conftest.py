"""Shared fixtures for unit tests.

This module provides reusable fixtures for testing yoto-sync components.
"""

import secrets
from collections.abc import Callable, Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tests.helpers.fake_mqtt import ClientFactory
from yoto_sync.transport.connection_manager import ConnectionManager, ConnectionState
from yoto_sync.transport.retry_policy import ReconnectPolicy

DEVICE_ID = "y2k-device-01"


def make_dummy_secret(prefix: str = "secret") -> str:
    """Return a deterministic-looking but non-literal secret string for tests."""
    return f"{prefix}-{secrets.token_hex(16)}"


@pytest.fixture
def dummy_secret_factory() -> Callable[[str], str]:
    """Create non-literal secrets for tests."""

    def _make(prefix: str = "secret") -> str:
        return make_dummy_secret(prefix)

    return _make


@pytest.fixture
def access_token() -> str:
    return make_dummy_secret("jwt")


@pytest.fixture
def fast_policy() -> ReconnectPolicy:
    """Reconnect policy without delays, keeping the default attempt budget."""
    return ReconnectPolicy(base_delay_seconds=0, max_delay_seconds=0, max_jitter_seconds=0, max_attempts=10)


@pytest.fixture
def client_factory() -> Iterator[ClientFactory]:
    """Patch aiomqtt.Client with a factory of in-memory fake clients."""
    factory = ClientFactory()
    with patch("yoto_sync.transport.connection_manager.aiomqtt.Client", side_effect=factory):
        yield factory


@pytest.fixture
def mock_connection() -> MagicMock:
    """Mock ConnectionManager in the connected state.

    subscribe() grants every topic; publish/unsubscribe succeed.
    """
    connection: MagicMock = MagicMock(spec=ConnectionManager)
    connection.state = ConnectionState.CONNECTED
    connection.is_connected = MagicMock(return_value=True)
    connection.subscribe = AsyncMock(return_value=())
    connection.unsubscribe = AsyncMock()
    connection.publish = AsyncMock()
    return connection


@pytest.fixture
def status_push() -> dict[str, object]:
    """MQTT data/status payload as the player sends it."""
    return {
        "batteryLevel": 90,
        "charging": 1,
        "fwVersion": "v2.17.5",
        "temp": "1014:23:318",
        "cardInserted": 2,
        "day": 1,
        "activeCard": "none",
        "nightlightMode": "off",
        "userVolume": 40,
        "free": 81232,
    }


@pytest.fixture
def events_push() -> dict[str, object]:
    """MQTT data/events payload; numbers and flags arrive as strings."""
    return {
        "playbackStatus": "playing",
        "cardId": "4aBcD",
        "trackTitle": "Chapter 1",
        "position": "12",
        "trackLength": "300",
        "sleepTimerActive": "false",
        "volume": "8",
        "volumeMax": "16",
        "eventUtc": "1700000000",
    }
