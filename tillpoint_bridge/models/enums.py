"""
TillPoint Bridge — Python Enums
"""

from enum import StrEnum


class ConnectionState(StrEnum):
    INITIALIZING = "INITIALIZING"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"


class ClientEvent(StrEnum):
    """Lifecycle events emitted by the messaging client."""

    QR = "qr"
    READY = "ready"
    AUTHENTICATED = "authenticated"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"
