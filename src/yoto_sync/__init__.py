"""Real-time device synchronization engine for Yoto players.

Keeps one MQTT session to the Yoto broker, merges MQTT pushes and HTTP polls
into per-device state groups and emits field-level change notifications.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
