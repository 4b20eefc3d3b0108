"""BLE radio, connection and discovery state definitions."""

from enum import Enum

__all__ = [
    "CentralPhase",
    "ConnectionState",
    "DiscoveryStatus",
    "RadioState",
    "is_valid_transition",
]


class RadioState(Enum):
    """Power/authorization state reported by the radio."""

    UNKNOWN = "unknown"
    RESETTING = "resetting"
    UNSUPPORTED = "unsupported"
    UNAUTHORIZED = "unauthorized"
    POWERED_OFF = "powered_off"
    POWERED_ON = "powered_on"

    @property
    def is_ready(self) -> bool:
        """True when scanning, connecting and advertising are permitted."""
        return self is RadioState.POWERED_ON


class ConnectionState(Enum):
    """Enum for managing BLE connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class DiscoveryStatus(Enum):
    """Progress of service discovery on a connected device."""

    NOT_REQUESTED = "not_requested"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class CentralPhase(Enum):
    """Lifecycle phase of a central session."""

    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_VALID_TRANSITIONS = {
    ConnectionState.DISCONNECTED: {
        ConnectionState.CONNECTING,
    },
    ConnectionState.CONNECTING: {
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTING,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.CONNECTED: {
        ConnectionState.DISCONNECTING,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.DISCONNECTING: {
        ConnectionState.DISCONNECTED,
    },
}


def is_valid_transition(
    from_state: ConnectionState, to_state: ConnectionState
) -> bool:
    """
    Validate if a connection state transition is allowed.

    Parameters:
        from_state (ConnectionState): Current state.
        to_state (ConnectionState): Desired next state.

    Returns:
        bool: True if the transition follows the connection lifecycle, False otherwise.
    """
    return to_state in _VALID_TRANSITIONS.get(from_state, set())
