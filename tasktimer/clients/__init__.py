"""Timer collaborators that keep connections alive or poll for messages."""

from .heartbeat import HEARTBEAT_TYPE, HeartbeatSender, HeartbeatTask
from .long_polling_client import LongPollingClient, PollingError

__all__ = [
    "HEARTBEAT_TYPE",
    "HeartbeatSender",
    "HeartbeatTask",
    "LongPollingClient",
    "PollingError",
]
