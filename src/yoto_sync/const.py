import os

from yoto_sync import __version__

__all__ = [
    "YES_ANSWER",
    "YOTO_API_BASE",
    "YOTO_API_TIMEOUT",
    "YOTO_DEBUG",
    "YOTO_LIVENESS_INTERVAL",
    "YOTO_LOG_FORMAT",
    "YOTO_LOG_HUMAN_OUTPUT",
    "YOTO_LOG_JSON_FILE",
    "YOTO_MQTT_ALPN_PROTOCOLS",
    "YOTO_MQTT_AUTH_NAME",
    "YOTO_MQTT_CLIENT_ID_PREFIX",
    "YOTO_MQTT_CONNECT_TIMEOUT",
    "YOTO_MQTT_HOST",
    "YOTO_MQTT_KEEPALIVE",
    "YOTO_MQTT_PORT",
    "YOTO_MQTT_PUBLISH_TIMEOUT",
    "YOTO_MQTT_TRANSPORT",
    "YOTO_MQTT_WS_PATH",
    "YOTO_PERF_THRESHOLD_MS",
    "YOTO_PERF_TRACKING",
    "YOTO_POLL_INTERVAL",
    "YOTO_RECONNECT_BASE_DELAY",
    "YOTO_RECONNECT_MAX_ATTEMPTS",
    "YOTO_RECONNECT_MAX_DELAY",
    "YOTO_RECONNECT_MAX_JITTER",
    "YOTO_SETTLE_DELAY",
    "YOTO_STALE_TIMEOUT",
    "YOTO_SYNC_VERSION",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw or raw.lower() == "null":
        return default
    try:
        value = float(raw)
    except (ValueError, TypeError):
        return default
    return value if value >= 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw or raw.lower() == "null":
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


YOTO_SYNC_VERSION: str = __version__
YOTO_DEBUG = os.environ.get("YOTO_DEBUG", "0").casefold() in YES_ANSWER

# MQTT broker (AWS IoT custom authorizer behind secure websockets)
YOTO_MQTT_HOST: str = os.environ.get("YOTO_MQTT_HOST", "aqrphjqbp3u2z-ats.iot.eu-west-2.amazonaws.com")
YOTO_MQTT_PORT: int = _env_int("YOTO_MQTT_PORT", 443)
YOTO_MQTT_TRANSPORT: str = os.environ.get("YOTO_MQTT_TRANSPORT", "websockets")
YOTO_MQTT_WS_PATH: str = os.environ.get("YOTO_MQTT_WS_PATH", "/mqtt")
YOTO_MQTT_AUTH_NAME: str = os.environ.get("YOTO_MQTT_AUTH_NAME", "PublicJWTAuthorizer")
YOTO_MQTT_CLIENT_ID_PREFIX: str = "DASH"
YOTO_MQTT_ALPN_PROTOCOLS: tuple[str, ...] = ("x-amzn-mqtt-ca",)
YOTO_MQTT_KEEPALIVE: int = _env_int("YOTO_MQTT_KEEPALIVE", 300)
YOTO_MQTT_CONNECT_TIMEOUT: float = _env_float("YOTO_MQTT_CONNECT_TIMEOUT", 30.0)
YOTO_MQTT_PUBLISH_TIMEOUT: float = _env_float("YOTO_MQTT_PUBLISH_TIMEOUT", 5.0)

# Reconnect backoff: min(base * 2^attempt, max) + uniform(0, jitter)
YOTO_RECONNECT_BASE_DELAY: float = _env_float("YOTO_RECONNECT_BASE_DELAY", 5.0)
YOTO_RECONNECT_MAX_DELAY: float = _env_float("YOTO_RECONNECT_MAX_DELAY", 60.0)
YOTO_RECONNECT_MAX_JITTER: float = _env_float("YOTO_RECONNECT_MAX_JITTER", 1.0)
YOTO_RECONNECT_MAX_ATTEMPTS: int = _env_int("YOTO_RECONNECT_MAX_ATTEMPTS", 10)

# Subscription baseline pull and liveness
YOTO_SETTLE_DELAY: float = _env_float("YOTO_SETTLE_DELAY", 2.0)
YOTO_STALE_TIMEOUT: float = _env_float("YOTO_STALE_TIMEOUT", 120.0)
YOTO_LIVENESS_INTERVAL: float = _env_float("YOTO_LIVENESS_INTERVAL", 1.0)

# HTTP pull client
YOTO_API_BASE: str = os.environ.get("YOTO_API_BASE", "https://api.yotoplay.com")
YOTO_API_TIMEOUT: int = _env_int("YOTO_API_TIMEOUT", 8)
YOTO_POLL_INTERVAL: float = _env_float("YOTO_POLL_INTERVAL", 60.0)

# Logging Configuration
YOTO_LOG_FORMAT: str = os.environ.get("YOTO_LOG_FORMAT", "human")  # "json", "human", or "both"
YOTO_LOG_JSON_FILE: str | None = os.environ.get("YOTO_LOG_JSON_FILE") or None
YOTO_LOG_HUMAN_OUTPUT: str = os.environ.get("YOTO_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# Performance Instrumentation
YOTO_PERF_TRACKING: bool = os.environ.get("YOTO_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("YOTO_PERF_THRESHOLD_MS", "250")
YOTO_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 250
