"""Unit tests for EngineSettings."""

import pydantic
import pytest

from tests.helpers.expectations import expect_exception
from yoto_sync.settings import EngineSettings


class TestEngineSettings:
    """Tests for EngineSettings defaults and validation"""

    def test_defaults(self):
        settings = EngineSettings()

        assert settings.mqtt_port == 443
        assert settings.mqtt_transport == "websockets"
        assert settings.stale_timeout == 120.0
        assert settings.reconnect_max_attempts == 10

    def test_reconnect_policy(self):
        settings = EngineSettings(reconnect_base_delay=1, reconnect_max_delay=4, reconnect_max_attempts=3)

        policy = settings.reconnect_policy()

        assert policy.max_attempts == 3
        assert policy.base_delay(5) == 4

    @pytest.mark.parametrize(
        "overrides",
        [
            {"mqtt_transport": "quic"},
            {"mqtt_port": 0},
            {"stale_timeout": 0},
            {"reconnect_max_attempts": 0},
        ],
    )
    def test_rejects_invalid_values(self, overrides):
        _ = expect_exception(EngineSettings, pydantic.ValidationError, **overrides)

    def test_frozen(self):
        settings = EngineSettings()

        with pytest.raises(pydantic.ValidationError):
            settings.stale_timeout = 10  # type: ignore[misc]
