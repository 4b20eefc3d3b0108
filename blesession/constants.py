"""Shared configuration, session identifiers and message templates."""

import logging

logger = logging.getLogger("blesession")

DISCONNECT_TIMEOUT_SECONDS = 5.0
EVENT_THREAD_JOIN_TIMEOUT = 2.0

# Default session identifiers used by the reducer (one session per role)
CENTRAL_SESSION_ID = "central"
PERIPHERAL_SESSION_ID = "peripheral"
PERIPHERAL_MANAGER_SESSION_ID = "peripheral-manager"


class BLEConfig:
    """Configuration constants for BLE session operations."""

    CONNECTION_TIMEOUT = 20.0
    POWER_PROBE_TIMEOUT = 2.0
    EVENT_THREAD_JOIN_TIMEOUT = EVENT_THREAD_JOIN_TIMEOUT
    DISCONNECT_TIMEOUT_SECONDS = DISCONNECT_TIMEOUT_SECONDS


ERROR_RADIO_NOT_READY = "Radio is not powered on (state: {0})"
ERROR_UNKNOWN_DEVICE = "Device '{0}' was not discovered in the current scan"
ERROR_ALREADY_CONNECTING = "A connection to '{0}' is already outstanding"
ERROR_NOT_CONNECTED = "Device is not connected"
ERROR_DISCOVERY_IN_PROGRESS = "Service discovery is already in progress"
ERROR_DUPLICATE_SESSION = "Session {0!r} already exists"
ERROR_NO_SESSION = "No live session {0!r}"
ERROR_ASYNC_TIMEOUT = "Async operation timed out"

__all__ = [
    "BLEConfig",
    "CENTRAL_SESSION_ID",
    "DISCONNECT_TIMEOUT_SECONDS",
    "ERROR_ALREADY_CONNECTING",
    "ERROR_ASYNC_TIMEOUT",
    "ERROR_DISCOVERY_IN_PROGRESS",
    "ERROR_DUPLICATE_SESSION",
    "ERROR_NOT_CONNECTED",
    "ERROR_NO_SESSION",
    "ERROR_RADIO_NOT_READY",
    "ERROR_UNKNOWN_DEVICE",
    "EVENT_THREAD_JOIN_TIMEOUT",
    "PERIPHERAL_MANAGER_SESSION_ID",
    "PERIPHERAL_SESSION_ID",
    "logger",
]
