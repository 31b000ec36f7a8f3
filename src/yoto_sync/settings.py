"""Per-engine settings, defaulting to the environment-driven constants."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from yoto_sync.const import (
    YOTO_API_BASE,
    YOTO_API_TIMEOUT,
    YOTO_LIVENESS_INTERVAL,
    YOTO_MQTT_AUTH_NAME,
    YOTO_MQTT_CONNECT_TIMEOUT,
    YOTO_MQTT_HOST,
    YOTO_MQTT_KEEPALIVE,
    YOTO_MQTT_PORT,
    YOTO_MQTT_PUBLISH_TIMEOUT,
    YOTO_MQTT_TRANSPORT,
    YOTO_MQTT_WS_PATH,
    YOTO_POLL_INTERVAL,
    YOTO_RECONNECT_BASE_DELAY,
    YOTO_RECONNECT_MAX_ATTEMPTS,
    YOTO_RECONNECT_MAX_DELAY,
    YOTO_RECONNECT_MAX_JITTER,
    YOTO_SETTLE_DELAY,
    YOTO_STALE_TIMEOUT,
)
from yoto_sync.transport.retry_policy import ReconnectPolicy


class EngineSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    mqtt_host: str = YOTO_MQTT_HOST
    mqtt_port: int = Field(default=YOTO_MQTT_PORT, gt=0, lt=65536)
    mqtt_transport: str = Field(default=YOTO_MQTT_TRANSPORT, pattern="^(websockets|tcp)$")
    mqtt_ws_path: str = YOTO_MQTT_WS_PATH
    mqtt_auth_name: str = YOTO_MQTT_AUTH_NAME
    keepalive: int = Field(default=YOTO_MQTT_KEEPALIVE, gt=0)
    connect_timeout: float = Field(default=YOTO_MQTT_CONNECT_TIMEOUT, gt=0)
    publish_timeout: float = Field(default=YOTO_MQTT_PUBLISH_TIMEOUT, gt=0)

    reconnect_base_delay: float = Field(default=YOTO_RECONNECT_BASE_DELAY, ge=0)
    reconnect_max_delay: float = Field(default=YOTO_RECONNECT_MAX_DELAY, ge=0)
    reconnect_max_jitter: float = Field(default=YOTO_RECONNECT_MAX_JITTER, ge=0)
    reconnect_max_attempts: int = Field(default=YOTO_RECONNECT_MAX_ATTEMPTS, ge=1)

    settle_delay: float = Field(default=YOTO_SETTLE_DELAY, ge=0)
    stale_timeout: float = Field(default=YOTO_STALE_TIMEOUT, gt=0)
    liveness_interval: float = Field(default=YOTO_LIVENESS_INTERVAL, gt=0)

    api_base: str = YOTO_API_BASE
    api_timeout: int = Field(default=YOTO_API_TIMEOUT, gt=0)
    poll_interval: float = Field(default=YOTO_POLL_INTERVAL, gt=0)

    def reconnect_policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            base_delay_seconds=self.reconnect_base_delay,
            max_delay_seconds=self.reconnect_max_delay,
            max_jitter_seconds=self.reconnect_max_jitter,
            max_attempts=self.reconnect_max_attempts,
        )
