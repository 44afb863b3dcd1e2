"""Client-level constants shared across modules."""
from __future__ import annotations

from enum import Enum


class ClientState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CHANNEL_OPENING = "CHANNEL_OPENING"
    DECLARING_EXCHANGE = "DECLARING_EXCHANGE"
    DECLARING_QUEUE = "DECLARING_QUEUE"
    BINDING = "BINDING"
    READY = "READY"
    CONSUMING = "CONSUMING"
    FAILED = "FAILED"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class EventKind(str, Enum):
    """Names of the client's event channels."""

    CONNECTED = "connected"
    SYSTEM = "system"
    MESSAGE = "message"
    ERROR = "error"


# States in which the channel has been fully declared and bound.
SETUP_COMPLETE_STATES = frozenset({ClientState.READY, ClientState.CONSUMING})

NO_CONFIGURATION_ERROR = "No incoming configuration was found!"
NO_CHANNEL_ERROR = (
    "No open communication channel found. "
    "Was the connection to the message queue server successful?"
)
